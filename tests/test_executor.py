from gearci.dsl import build, cache, checkout, install_toolchain, job, sh
from gearci.environment import provision
from gearci.errors import StepFailure
from gearci.executor import run_job
from gearci.model import FAILED, SKIPPED, SUCCEEDED, RUN, Step
from gearci.step_workflows import HANDLERS


def _run(tmp_path, make_ctx, j, **ctx_kwargs):
    with provision(j.name, tmp_path / "work", env=j.env) as env:
        ctx = make_ctx(j, env, **ctx_kwargs)
        result = run_job(j, env, ctx)
        workspace = sorted(p.name for p in env.workspace.iterdir())
        return result, ctx, workspace


def test_steps_run_in_order(tmp_path, make_ctx):
    j = job(
        "ordered",
        sh("one", "echo 1 >> order.txt"),
        sh("two", "echo 2 >> order.txt"),
        sh("three", "cat order.txt && test \"$(cat order.txt | tr -d '\\n')\" = 12"),
    )
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == SUCCEEDED
    assert [s.status for s in result.steps] == [SUCCEEDED] * 3


def test_first_failure_skips_remaining_steps(tmp_path, make_ctx):
    j = job(
        "failing",
        sh("ok", "touch first"),
        sh("boom", "echo broken >&2; exit 4"),
        sh("never", "touch never"),
    )
    result, _ctx, workspace = _run(tmp_path, make_ctx, j)

    assert result.status == FAILED
    assert [s.status for s in result.steps] == [SUCCEEDED, FAILED, SKIPPED]
    assert result.steps[1].exit_code == 4
    assert isinstance(result.error, StepFailure)
    assert result.error.step == "boom"
    assert result.error.stderr.strip() == "broken"
    assert workspace == ["first"]


def test_cancel_before_start_skips_job(tmp_path, make_ctx):
    import threading

    cancel = threading.Event()
    cancel.set()
    j = job("cancelled", sh("one", "touch one"), sh("two", "touch two"))
    result, _ctx, workspace = _run(tmp_path, make_ctx, j, cancel=cancel)

    assert result.status == SKIPPED
    assert [s.status for s in result.steps] == [SKIPPED, SKIPPED]
    assert workspace == []


def test_cancel_stops_before_next_step(tmp_path, make_ctx, monkeypatch):
    import threading

    cancel = threading.Event()
    original = HANDLERS[RUN]

    def run_then_cancel(ctx, step):
        out = original(ctx, step)
        cancel.set()
        return out

    monkeypatch.setitem(HANDLERS, RUN, run_then_cancel)
    j = job("interrupted", sh("one", "touch one"), sh("two", "touch two"))
    result, _ctx, workspace = _run(tmp_path, make_ctx, j, cancel=cancel)

    assert result.status == SKIPPED
    assert [s.status for s in result.steps] == [SUCCEEDED, SKIPPED]
    assert workspace == ["one"]


def test_unknown_step_kind_fails_job(tmp_path, make_ctx):
    j = job("odd", Step(name="mystery", kind="teleport"))
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert result.steps[0].exit_code == -1
    assert "teleport" in result.error.stderr


def test_bad_expression_fails_step(tmp_path, make_ctx):
    j = job("expr", sh("bad", "echo ${{ runner.os == 'Linux' }}"))
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert "Unsupported expression" in result.error.stderr


def test_checkout_copies_source_without_git_dir(tmp_path, make_ctx):
    j = job("co", checkout(), sh("check", "test -f Cargo.lock && test -f src/main.rs && test ! -e .git"))
    result, ctx, workspace = _run(tmp_path, make_ctx, j)
    assert result.status == SUCCEEDED
    assert ".git" not in workspace


def test_checkout_of_missing_source_fails(tmp_path, make_ctx):
    from gearci.model import PushEvent

    j = job("co", checkout())
    result, _ctx, _ = _run(tmp_path, make_ctx, j, event=PushEvent(branch="live", source=tmp_path / "gone"))
    assert result.status == FAILED


def test_step_outputs_feed_later_steps(tmp_path, make_ctx, fake_tools):
    j = job(
        "tc",
        install_toolchain("stable", override=True),
        sh("show", "test '${{ steps.toolchain.outputs.rustc_hash }}' = 82e1608df"),
    )
    result, ctx, _ = _run(tmp_path, make_ctx, j)

    assert result.status == SUCCEEDED
    assert ctx.step_outputs["toolchain"]["rustc"] == "1.75.0"
    assert ctx.step_outputs["toolchain"]["rustc_date"] == "2023-12-21"
    log = fake_tools.read_text(encoding="utf-8")
    assert "rustup toolchain install stable --profile minimal" in log
    assert "rustup override set stable" in log


def test_build_failure_reports_exit_code(tmp_path, make_ctx, fake_tools, monkeypatch):
    monkeypatch.setenv("FAKE_FAIL_TEST", "1")
    j = job("t", checkout(), build("test"))
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert result.error.exit_code == 101
    assert "cargo test" in fake_tools.read_text(encoding="utf-8")


def test_cache_saved_after_success(tmp_path, make_ctx, cache_store):
    j = job(
        "cached",
        checkout(),
        cache("Linux-test-${{ hashFiles('**/Cargo.lock') }}", ["target"]),
        sh("compile", "mkdir -p target && echo built > target/out"),
    )
    result, ctx, _ = _run(tmp_path, make_ctx, j)

    assert result.status == SUCCEEDED
    keys = cache_store.keys()
    assert len(keys) == 1 and keys[0].startswith("Linux-test-") and len(keys[0]) > len("Linux-test-")
    assert result.cache_events[0].startswith("restore: cache miss")
    assert result.cache_events[-1].startswith("save: saved")

    # second run restores and, with unchanged contents, does not rewrite
    result, ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == SUCCEEDED
    assert result.cache_events[0].startswith("restore: cache hit")
    assert result.cache_events[-1].startswith("save: unchanged")


def test_cache_link_outside_sandbox_does_not_fail_the_job(tmp_path, make_ctx, cache_store):
    outside = tmp_path / "outside.txt"
    outside.write_text("host file", encoding="utf-8")
    j = job(
        "cached",
        cache("k1", ["target"]),
        sh("compile", f"mkdir -p target && echo built > target/out && ln -s {outside} target/link"),
    )
    result, _ctx, _ = _run(tmp_path, make_ctx, j)

    assert result.status == SUCCEEDED
    assert cache_store.keys() == ["k1"]
    assert cache_store.manifest("k1")["skipped"] == ["workspace/target/link"]
    assert result.cache_events[-1].startswith("save: saved")


def test_cache_not_saved_when_job_fails(tmp_path, make_ctx, cache_store):
    j = job(
        "cached",
        cache("k", ["target"]),
        sh("compile", "mkdir -p target && echo built > target/out"),
        sh("tests", "exit 1"),
    )
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert cache_store.keys() == []


def test_cache_path_outside_sandbox_fails(tmp_path, make_ctx):
    j = job("escape", cache("k", ["/etc"]))
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert "escapes the job sandbox" in result.error.stderr


def test_missing_tool_gets_a_hint(tmp_path, make_ctx, monkeypatch):
    from gearci import settings

    monkeypatch.setattr(settings, "CARGO", str(tmp_path / "no-such-dir" / "cargo"))
    j = job("t", build("test"))
    result, _ctx, _ = _run(tmp_path, make_ctx, j)
    assert result.status == FAILED
    assert "Install the Rust toolchain" in result.error.stderr
