"""
Tests for the container engine and host executors.
"""
import pytest
from fakes import RecordingRunner
from envprov.BUILDERS.executors import ContainerExecutor, LocalExecutor
from envprov.errors import EnvprovError, ImageResolutionError
from envprov.MODELS.recipe import BaseImage

RUST = BaseImage(name="rust", version="1.67")


def engine(results=None):
    results = dict(results or {})
    results.setdefault("image", (0, 'sha256:base|["bash"]\n'))
    results.setdefault("commit", (0, "sha256:layer1\n"))
    runner = RecordingRunner(results)
    return ContainerExecutor(runner=runner, docker="docker"), runner


class TestContainerExecutor:
    def test_instantiate_pulls_and_inspects(self):
        executor, runner = engine()
        assert executor.instantiate(RUST) == "sha256:base"
        assert runner.calls[0] == ["docker", "pull", "rust:1.67"]
        assert runner.calls[1][:3] == ["docker", "image", "inspect"]
        assert executor.current == "sha256:base"

    def test_pull_failure_is_resolution_error(self):
        executor, runner = engine({"pull": (1, "")})
        with pytest.raises(ImageResolutionError, match="rust:1.67"):
            executor.instantiate(RUST)
        assert runner.subcommands() == ["pull"]

    def test_run_commits_layer(self):
        executor, runner = engine()
        executor.instantiate(RUST)
        outcome = executor.run(["rustup", "component", "add", "rustfmt"], {})

        assert outcome.ok
        assert outcome.image_id == "sha256:layer1"
        assert executor.current == "sha256:layer1"
        assert executor.committed == ["sha256:layer1"]

        run_call, commit_call, rm_call = runner.calls[2:]
        container = run_call[3]
        assert container.startswith("envprov-")
        assert run_call == ["docker", "run", "--name", container, "sha256:base",
                            "rustup", "component", "add", "rustfmt"]
        assert commit_call == ["docker", "commit", "--change", 'CMD ["bash"]', container]
        assert rm_call == ["docker", "rm", "-f", container]

    def test_run_scopes_environment_to_command(self):
        executor, runner = engine()
        executor.instantiate(RUST)
        executor.run(["sh", "-c", "apt-get update"], {"DEBIAN_FRONTEND": "noninteractive"})
        run_call = runner.calls[2]
        assert run_call[5:] == ["env", "DEBIAN_FRONTEND=noninteractive", "sh", "-c", "apt-get update"]

    def test_failed_step_is_not_committed(self):
        executor, runner = engine({"run": (100, "")})
        executor.instantiate(RUST)
        outcome = executor.run(["sh", "-c", "apt-get install -y nope"], {})

        assert outcome.exit_code == 100
        assert "commit" not in runner.subcommands()
        assert runner.subcommands()[-1] == "rm"
        assert executor.current == "sha256:base"
        assert executor.committed == []

    def test_without_base_cmd_no_change_flag(self):
        executor, runner = engine({"image": (0, "sha256:base|null\n")})
        executor.instantiate(RUST)
        executor.run(["true"], {})
        commit_call = next(c for c in runner.calls if c[1] == "commit")
        assert "--change" not in commit_call

    def test_run_before_instantiate(self):
        executor, _ = engine()
        with pytest.raises(RuntimeError):
            executor.run(["true"], {})

    def test_discard_removes_committed_layers(self):
        executor, runner = engine()
        executor.instantiate(RUST)
        executor.run(["true"], {})
        executor.committed.append("sha256:layer2")
        executor.discard()
        rmi_calls = [c for c in runner.calls if c[1] == "rmi"]
        assert rmi_calls == [
            ["docker", "rmi", "-f", "sha256:layer2"],
            ["docker", "rmi", "-f", "sha256:layer1"],
        ]
        assert executor.committed == []

    def test_finalize_tags_last_layer(self):
        executor, runner = engine()
        executor.instantiate(RUST)
        executor.run(["true"], {})
        assert executor.finalize("rust-data:dev") == "sha256:layer1"
        assert runner.calls[-1] == ["docker", "tag", "sha256:layer1", "rust-data:dev"]

    def test_failed_tag_discards(self):
        executor, runner = engine({"tag": (1, "")})
        executor.instantiate(RUST)
        executor.run(["true"], {})
        with pytest.raises(EnvprovError):
            executor.finalize("rust-data:dev")
        assert "rmi" in runner.subcommands()

    def test_probe(self):
        executor, runner = engine({"run": (1, "")})
        assert not executor.probe(["dpkg", "-s", "git"], image="rust-data:dev")
        assert runner.calls[-1] == ["docker", "run", "--rm", "rust-data:dev", "dpkg", "-s", "git"]


class TestLocalExecutor:
    def test_runs_on_host_with_env(self):
        calls = []

        class Runner:
            def run(self, argv, env=None, capture=False, quiet=False):
                from envprov.RUNNERS.command_runner import CommandResult
                calls.append((argv, env, quiet))
                return CommandResult(argv=argv, exit_code=0)

        executor = LocalExecutor(runner=Runner())
        assert executor.instantiate(RUST) is None
        assert executor.run(["sh", "-c", "true"], {"A": "1"}).ok
        assert executor.probe(["true"])
        assert calls == [(["sh", "-c", "true"], {"A": "1"}, False), (["true"], None, True)]
        assert executor.finalize("ignored") is None
        assert executor.target == "localhost"
