"""Folder tree walks.

All walks are depth-first, children in listing order, and never mutate the
tree. Script nodes are leaves even if the listing nests runs under them.
Trees are acyclic by construction; a cyclic tree ends in RecursionError.
"""

from typing import Iterator

from testpad_rounds.models import FolderNode


def iter_scripts_with_path(
    node: FolderNode, path: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], FolderNode]]:
    """Yield ``(folder_path, script)`` for every script below ``node``.

    ``folder_path`` holds the names of the folders between ``node`` and the
    script, ``node`` itself excluded.
    """
    for child in node.children:
        if child.is_script:
            yield path, child
        elif child.is_folder:
            yield from iter_scripts_with_path(child, path + (child.name,))


def iter_scripts(node: FolderNode) -> Iterator[FolderNode]:
    for _, script in iter_scripts_with_path(node):
        yield script


def extract_scripts(node: FolderNode) -> list[FolderNode]:
    return list(iter_scripts(node))


def extract_script_ids(node: FolderNode) -> list[int]:
    return [int(script.id) for script in iter_scripts(node)]


def iter_folders(node: FolderNode, depth: int = 0) -> Iterator[tuple[FolderNode, int]]:
    """Yield ``(folder, depth)`` for every folder below ``node``, for pickers."""
    for child in node.children:
        if child.is_folder:
            yield child, depth
            yield from iter_folders(child, depth + 1)
