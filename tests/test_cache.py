import os

from gearci.cache import CacheStore, cache_key, fingerprint, hash_files
from gearci.environment import provision

PATHS = ["~/.cargo/registry", "target"]


def _populate(env, marker="v1"):
    (env.home / ".cargo" / "registry").mkdir(parents=True)
    (env.home / ".cargo" / "registry" / "index").write_text(f"index-{marker}", encoding="utf-8")
    (env.workspace / "target" / "debug").mkdir(parents=True)
    (env.workspace / "target" / "debug" / "app").write_text(f"bin-{marker}", encoding="utf-8")


def test_cache_key_components():
    assert cache_key("Linux", "test", "82e1608df", "abc") == "Linux-test-82e1608df-abc"


def test_hash_files(tmp_path):
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "Cargo.lock").write_text("one", encoding="utf-8")
    (tmp_path / "Cargo.lock").write_text("two", encoding="utf-8")

    first = hash_files(tmp_path, "**/Cargo.lock")
    assert len(first) == 64
    assert hash_files(tmp_path, "**/Cargo.lock") == first

    (tmp_path / "a" / "Cargo.lock").write_text("changed", encoding="utf-8")
    assert hash_files(tmp_path, "**/Cargo.lock") != first


def test_hash_files_without_matches_is_empty(tmp_path):
    assert hash_files(tmp_path, "**/Cargo.lock") == ""


def test_miss_then_hit_in_a_fresh_sandbox(tmp_path, cache_store):
    key = "Linux-test-82e1608df-abc"
    with provision("producer", tmp_path / "work") as env:
        assert cache_store.restore(key, env, PATHS).reason == "cache miss"
        _populate(env)
        saved = cache_store.save(key, env, PATHS)
        assert saved.reason == "saved"
        assert saved.manifest["files"] == 2
        expected = fingerprint(env, PATHS)

    assert cache_store.exists(key)
    assert cache_store.keys() == [key]

    with provision("consumer", tmp_path / "work") as env:
        hit = cache_store.restore(key, env, PATHS)
        assert hit.hit
        assert (env.workspace / "target" / "debug" / "app").read_text(encoding="utf-8") == "bin-v1"
        assert (env.home / ".cargo" / "registry" / "index").read_text(encoding="utf-8") == "index-v1"
        assert fingerprint(env, PATHS) == expected


def test_any_differing_key_component_misses(tmp_path, cache_store):
    with provision("j", tmp_path / "work") as env:
        _populate(env)
        cache_store.save(cache_key("Linux", "test", "tc1", "lock1"), env, PATHS)

    with provision("j", tmp_path / "work") as env:
        for key in (
            cache_key("macOS", "test", "tc1", "lock1"),
            cache_key("Linux", "release", "tc1", "lock1"),
            cache_key("Linux", "test", "tc2", "lock1"),
            cache_key("Linux", "test", "tc1", "lock2"),
        ):
            assert not cache_store.restore(key, env, PATHS).hit
        assert not (env.workspace / "target").exists()


def test_prefixes_never_share_state(tmp_path, cache_store):
    test_key = cache_key("Linux", "test", "tc", "lock")
    release_key = cache_key("Linux", "release", "tc", "lock")

    with provision("test", tmp_path / "work") as env:
        _populate(env, "test")
        cache_store.save(test_key, env, PATHS)
    with provision("release", tmp_path / "work") as env:
        _populate(env, "release")
        cache_store.save(release_key, env, PATHS)

    with provision("release", tmp_path / "work") as env:
        cache_store.restore(release_key, env, PATHS)
        assert (env.workspace / "target" / "debug" / "app").read_text(encoding="utf-8") == "bin-release"

    assert cache_store.keys() == sorted([test_key, release_key])


def test_last_writer_wins(tmp_path, cache_store):
    key = "Linux-test-tc-lock"
    for marker in ("first", "second"):
        with provision("j", tmp_path / "work") as env:
            _populate(env, marker)
            cache_store.save(key, env, PATHS)

    with provision("j", tmp_path / "work") as env:
        cache_store.restore(key, env, PATHS)
        assert (env.workspace / "target" / "debug" / "app").read_text(encoding="utf-8") == "bin-second"
    assert cache_store.keys() == [key]
    assert not list(cache_store.root.glob("*.tmp"))


def test_empty_paths_are_not_saved(tmp_path, cache_store):
    with provision("j", tmp_path / "work") as env:
        saved = cache_store.save("k", env, PATHS)
    assert saved.reason.startswith("nothing to save")
    assert not cache_store.exists("k")


def test_empty_key_is_a_miss(tmp_path, cache_store):
    with provision("j", tmp_path / "work") as env:
        assert cache_store.restore("", env, PATHS).reason == "empty cache key"


def test_store_is_shared_between_instances(tmp_path):
    key = "Linux-test-tc-lock"
    with provision("j", tmp_path / "work") as env:
        _populate(env)
        CacheStore(tmp_path / "shared").save(key, env, PATHS)
    assert CacheStore(tmp_path / "shared").exists(key)


def test_symlinks_inside_the_sandbox_are_kept_as_links(tmp_path, cache_store):
    with provision("j", tmp_path / "work") as env:
        _populate(env)
        os.symlink("debug/app", env.workspace / "target" / "current")
        saved = cache_store.save("k", env, PATHS)
        assert saved.manifest["files"] == 3
        assert saved.manifest["skipped"] == []

    with provision("j", tmp_path / "work") as env:
        assert cache_store.restore("k", env, PATHS).hit
        link = env.workspace / "target" / "current"
        assert link.is_symlink()
        assert os.readlink(link) == "debug/app"
        assert link.read_text(encoding="utf-8") == "bin-v1"


def test_links_leaving_the_sandbox_are_skipped(tmp_path, cache_store):
    outside = tmp_path / "outside.txt"
    outside.write_text("host file", encoding="utf-8")

    with provision("j", tmp_path / "work") as env:
        _populate(env)
        target = env.workspace / "target"
        os.symlink(str(outside), target / "abs")
        os.symlink(os.path.relpath(outside, target), target / "rel")

        before = fingerprint(env, PATHS)
        saved = cache_store.save("k", env, PATHS)
        assert saved.reason == "saved"
        assert saved.manifest["skipped"] == ["workspace/target/abs", "workspace/target/rel"]
        assert saved.manifest["files"] == 2
        assert fingerprint(env, PATHS) == before

    with provision("j", tmp_path / "work") as env:
        assert cache_store.restore("k", env, PATHS).hit
        target = env.workspace / "target"
        assert (target / "debug" / "app").read_text(encoding="utf-8") == "bin-v1"
        assert not os.path.lexists(target / "abs")
        assert not os.path.lexists(target / "rel")
    assert outside.read_text(encoding="utf-8") == "host file"
