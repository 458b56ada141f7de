from typing import Callable, Dict, List, Optional, Tuple
from ..models.files import SubDir
from .keys import KeyDecodeError, is_file, try_unescape_segment, unescape_segment

ORDERS = ("desc", "asc")
EMPTY_POLICIES = ("error", "empty")


class TreeBuildError(Exception):
    """Exception raised when a folder tree cannot be built."""
    pass


class SubDirTreeBuilder:
    """Builds a tree of folders from a flat list of object keys.

    Keys are expected relative to the root folder, without trailing slash
    (see strip_processing_prefix). The first segment of a key is a folder,
    the rest of the key is percent-decoded and is either a file of this
    folder or a path of sub folders. A key without any slash is a folder with
    no known content, e.g. an empty folder marker.
    """

    def __init__(self, order: str = "desc", strict: bool = False, empty: str = "error",
                 on_skip: Optional[Callable[[str, KeyDecodeError], None]] = None):
        """Initiate the builder.

        Args:
            order (str, optional): Sort order of the folders at each level, "desc" or "asc". Defaults to "desc".
            strict (bool, optional): Raise on undecodable keys instead of skipping them. Defaults to False.
            empty (str, optional): What an empty key list gives, "error" raises TreeBuildError,
            "empty" returns an empty tree. Defaults to "error".
            on_skip (Callable, optional): Called with the raw segment and the error for each skipped key.
        """
        if order not in ORDERS:
            raise ValueError(f"Unknown tree order {order}, expected one of {ORDERS}")
        if empty not in EMPTY_POLICIES:
            raise ValueError(f"Unknown empty listing policy {empty}, expected one of {EMPTY_POLICIES}")
        self.order = order
        self.strict = strict
        self.empty = empty
        self.on_skip = on_skip
        self.keys: List[str] = []
        self.skipped = 0

    def add_keys(self, keys: List[str]):
        for key in keys:
            self.add_key(key)
        return self

    def add_key(self, key: str):
        if key:
            self.keys.append(key)
        return self

    def build(self) -> List[SubDir]:
        """Get the top level folders, populated recursively.

        Raises:
            TreeBuildError: When there is no key and the empty policy is "error"

        Returns:
            List[SubDir]: The top level folders
        """
        self.skipped = 0
        if not self.keys:
            if self.empty == "error":
                raise TreeBuildError("no data")
            return []
        return self._to_tree(self.keys)

    #
    # Private methods
    #

    def _to_tree(self, keys: List[str]) -> List[SubDir]:
        groups: Dict[str, Tuple[List[str], List[str]]] = {}
        for key in keys:
            if not key:
                continue
            index = key.find("/")
            if index <= 0:
                groups.setdefault(key, ([], []))
                continue
            name = key[:index]
            subdirs, files = groups.setdefault(name, ([], []))
            sub_path = self._unescape(key[index + 1:])
            if sub_path is None:
                continue
            if is_file(sub_path):
                files.append(sub_path)
            else:
                subdirs.append(sub_path)

        nodes = [SubDir(name=name, subdirs=self._to_tree(subdirs), files=files)
                 for name, (subdirs, files) in groups.items()]
        return sorted(nodes, key=lambda node: node.name, reverse=self.order == "desc")

    def _unescape(self, raw: str) -> Optional[str]:
        if self.strict:
            return unescape_segment(raw)
        return try_unescape_segment(raw, self._skip)

    def _skip(self, raw: str, error: KeyDecodeError):
        self.skipped += 1
        if self.on_skip is not None:
            self.on_skip(raw, error)
