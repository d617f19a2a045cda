"""Tests for breadcrumb path reconstruction."""

from chatgpa.core.breadcrumbs import MAX_PATH_DEPTH, FolderLink, build_breadcrumbs, walk_folder_path


def fetcher(links):
    by_id = {link.id: link for link in links}
    return by_id.get


class TestWalkFolderPath:
    """Tests for walk_folder_path()."""

    def test_root_to_leaf(self):
        links = [FolderLink("a", "Unit 1", None), FolderLink("b", "Week 1", "a"), FolderLink("c", "Day 1", "b")]

        chain = walk_folder_path("c", fetcher(links))

        assert [f.id for f in chain] == ["a", "b", "c"]

    def test_missing_folder(self):
        assert walk_folder_path("nope", fetcher([])) == []

    def test_missing_parent_truncates(self):
        chain = walk_folder_path("b", fetcher([FolderLink("b", "B", "gone")]))
        assert [f.id for f in chain] == ["b"]

    def test_cycle_returns_partial(self):
        """a → b → a stops at the repeat."""
        links = [FolderLink("a", "A", "b"), FolderLink("b", "B", "a")]

        chain = walk_folder_path("a", fetcher(links))

        assert [f.id for f in chain] == ["b", "a"]

    def test_depth_cap(self):
        """A chain of 25 stops after MAX_PATH_DEPTH + 1 folders."""
        links = [FolderLink(f"f{i}", f"F{i}", f"f{i - 1}" if i else None) for i in range(25)]

        chain = walk_folder_path("f24", fetcher(links))

        assert len(chain) == MAX_PATH_DEPTH + 1
        assert chain[-1].id == "f24"
        assert chain[0].id == "f4"


class TestBuildBreadcrumbs:
    """Tests for build_breadcrumbs()."""

    def test_class_first(self):
        chain = [FolderLink("a", "Unit 1", None), FolderLink("b", "Week 1", "a")]

        path = build_breadcrumbs("k1", "Biology", chain)

        assert [s.to_dict() for s in path] == [
            {"id": "k1", "name": "Biology", "type": "class"},
            {"id": "a", "name": "Unit 1", "type": "folder"},
            {"id": "b", "name": "Week 1", "type": "folder"},
        ]

    def test_empty_chain(self):
        assert len(build_breadcrumbs("k1", "Biology", [])) == 1
