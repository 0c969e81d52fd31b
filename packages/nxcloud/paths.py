"""Remote path resolution.

Remote paths are plain strings that are always absolute and normalized:
a leading '/', no empty, '.' or '..' segments and no trailing '/', except
for the root itself. ``resolve`` is the only place that joins paths.
"""

from .models import RemotePath

ROOT: RemotePath = "/"
SEPARATOR = "/"


def _segments(path: str) -> list[str]:
    return [part for part in path.split(SEPARATOR) if part and part != "."]


def normalize(path: str) -> RemotePath:
    """Normalize a path, treating it as absolute."""
    stack: list[str] = []
    for part in _segments(path):
        if part == "..":
            # Popping past the root stays at the root
            if stack:
                stack.pop()
        else:
            stack.append(part)
    return SEPARATOR + SEPARATOR.join(stack)


def resolve(current_dir: RemotePath, user_input: str) -> RemotePath:
    """Resolve user input against the current remote directory.

    Args:
        current_dir: Current remote directory (absolute)
        user_input: Path typed by the user, absolute or relative

    Returns:
        Absolute, normalized remote path

    Examples:
        resolve("/a/b", "../c") -> "/a/c"
        resolve("/a", "../../x") -> "/x"
        resolve("/a/b", "/z") -> "/z"
    """
    if user_input.startswith(SEPARATOR):
        return normalize(user_input)
    return normalize(current_dir + SEPARATOR + user_input)


def remote_join(parent: RemotePath, name: str) -> RemotePath:
    """Append one entry name to an already-resolved directory."""
    return resolve(parent, name.replace(SEPARATOR, ""))


def remote_basename(path: RemotePath) -> str:
    """Last segment of a path, '' for the root."""
    return path.rstrip(SEPARATOR).rsplit(SEPARATOR, 1)[-1]


def remote_parent(path: RemotePath) -> RemotePath:
    return normalize(path + SEPARATOR + "..")


def remote_ancestors(path: RemotePath) -> list[RemotePath]:
    """All proper ancestors below the root plus the path itself, top-down.

    remote_ancestors("/a/b/c") -> ["/a", "/a/b", "/a/b/c"]
    """
    result = []
    current = ""
    for part in _segments(normalize(path)):
        current = current + SEPARATOR + part
        result.append(current)
    return result


def is_root(path: RemotePath) -> bool:
    return normalize(path) == ROOT
