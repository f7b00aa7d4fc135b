"""
Read-only access to a mirrored resource tree.

Used by `cfs list`, `cfs find` and the browse server. Anything in the output
root that is not a resource file (the .gitignore, errors.log, the plugins
directory) is skipped.
"""
import logging
import os
from typing import Dict, List

from .constants import NON_RESOURCE_ENTRIES

logger = logging.getLogger(__name__)


def list_resource_paths(root: str) -> List[str]:
    """
    Return every resource file under root, as sorted paths relative to it.

    Returns an empty list if root does not exist.
    """
    if not os.path.isdir(root):
        return []

    paths = []
    for dirpath, dirnames, filenames in os.walk(root):
        if dirpath == root:
            dirnames[:] = [d for d in dirnames if d not in NON_RESOURCE_ENTRIES]
            filenames = [f for f in filenames if f not in NON_RESOURCE_ENTRIES]
        for filename in filenames:
            full = os.path.join(dirpath, filename)
            paths.append(os.path.relpath(full, root).replace(os.sep, '/'))

    return sorted(paths)


def load_resources(root: str) -> List[Dict[str, str]]:
    """
    Read every resource file into memory.

    Returns:
        [{'id': index, 'path': relative path, 'content': raw file text}]
    """
    resources = []
    for index, path in enumerate(list_resource_paths(root)):
        with open(os.path.join(root, path)) as f:
            resources.append({'id': str(index), 'path': path, 'content': f.read()})
    logger.debug(f"Loaded {len(resources)} resources from {root}")
    return resources


def search_resources(resources: List[Dict[str, str]], text: str) -> List[Dict[str, str]]:
    """Case-insensitive substring match over resource paths and contents."""
    needle = text.lower()
    return [
        r for r in resources
        if needle in r['path'].lower() or needle in r['content'].lower()
    ]


def find_resources(root: str, text: str) -> List[str]:
    """Return the relative paths of resources whose path or content contains text."""
    return [r['path'] for r in search_resources(load_resources(root), text)]
