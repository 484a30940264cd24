"""Plugins bundled with Switchboard.

Each subdirectory holds one plugin and its ``plugin.yaml`` manifest. This
directory is the default plugin discovery root.
"""
