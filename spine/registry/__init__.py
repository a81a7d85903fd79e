"""Registry — the desired-state layer for package links.

The registry provides:
- Records: one entry per configured package (name, source path, version)
- Linked projects: where each package is expected to be linked
- Persistence: atomic, all-or-nothing writes of the whole record set
"""
