"""Tests for the git repository cache."""

from pathlib import Path

from gitops_sync.source.cache import GitCache


def test_repo_path(tmp_path: Path) -> None:
    """Test each url gets a stable path named after the repository."""
    cache = GitCache(tmp_path)
    https = cache.get_repo_path("https://github.com/example/voting-app.git")
    assert https.parent == tmp_path / "voting-app"
    assert https.parent.exists()
    assert cache.get_repo_path("https://github.com/example/voting-app.git") == https

    ssh = cache.get_repo_path("git@github.com:example/voting-app.git")
    assert ssh.parent == tmp_path / "voting-app"
    assert ssh != https

    other = cache.get_repo_path("https://github.com/example/Other_Repo/")
    assert other.parent.name == "other-repo"


def test_freshness(tmp_path: Path) -> None:
    """Test a mirror is fresh only within the window after a fetch."""
    cache = GitCache(tmp_path)
    url = "https://github.com/example/voting-app.git"
    assert not cache.is_fresh(url, 60)
    cache.mark_fetched(url)
    assert cache.is_fresh(url, 60)
    assert not cache.is_fresh(url, 0)


def test_cleanup(tmp_path: Path) -> None:
    """Test cleanup removes mirrors and forgets fetch times."""
    cache = GitCache(tmp_path)
    url = "https://github.com/example/voting-app.git"
    path = cache.get_repo_path(url)
    path.mkdir()
    (path / "HEAD").write_text("ref: refs/heads/main\n")
    cache.mark_fetched(url)

    cache.cleanup()
    assert not path.exists()
    assert not cache.is_fresh(url, 60)
