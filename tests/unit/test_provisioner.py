"""
Tests for the sequential provisioning loop.
"""
import pytest
from fakes import FakeExecutor
from envprov.BUILDERS.image_builder import Provisioner
from envprov.errors import (
    ComponentInstallError,
    ImageResolutionError,
    LibraryInstallError,
    SystemPackageError,
)
from envprov.MODELS.recipe import (
    BaseImage,
    ComponentStep,
    LibraryInstallStep,
    Recipe,
    SystemPackageStep,
    default_recipe,
)
from envprov.REGISTRY.image_cache import ImageCache


@pytest.fixture
def cache(tmp_path):
    return ImageCache(str(tmp_path / "cache"))


def recipe_with_libraries(packages, package="python3-pip"):
    return Recipe(
        name="test",
        base_image=BaseImage(name="rust", version="1.67"),
        steps=[
            ComponentStep(component="rustfmt"),
            SystemPackageStep(package=package),
            LibraryInstallStep(packages=packages),
        ],
    )


class TestSuccessfulBuild:
    def test_steps_run_in_order(self, cache):
        executor = FakeExecutor()
        result = Provisioner(executor, cache=cache).build(default_recipe(), tag="rust-data:dev")

        assert executor.commands == [s.command() for s in default_recipe().steps]
        assert [layer.index for layer in result.layers] == [2, 3, 4]
        assert result.base_image_id == "sha256:base"
        assert result.image_id == "sha256:layer3"
        assert result.tag == "rust-data:dev"
        assert executor.finalized_with == "rust-data:dev"
        assert not executor.discarded

    def test_library_installer_called_once(self):
        executor = FakeExecutor()
        Provisioner(executor).build(default_recipe())
        pip_calls = [c for c in executor.commands if c[0] == "pip3"]
        assert pip_calls == [["pip3", "install", "polars", "pandas", "numpy", "matplotlib"]]

    def test_step_environment_passed(self):
        executor = FakeExecutor()
        Provisioner(executor).build(default_recipe())
        assert executor.envs[1] == {"DEBIAN_FRONTEND": "noninteractive"}

    def test_recorded_in_cache(self, cache):
        result = Provisioner(FakeExecutor(), cache=cache).build(default_recipe(), tag="t")
        entry = cache.get(result.fingerprint)
        assert entry.tag == "t"
        assert entry.layers == 3

    def test_rebuild_is_reproducible(self, cache):
        first = FakeExecutor()
        second = FakeExecutor()
        a = Provisioner(first, cache=cache).build(default_recipe())
        b = Provisioner(second, cache=cache).build(default_recipe())
        assert a.fingerprint == b.fingerprint
        assert first.commands == second.commands
        assert len(cache.list_builds()) == 1

    def test_rerun_on_same_target_succeeds(self):
        executor = FakeExecutor()
        provisioner = Provisioner(executor)
        provisioner.build(default_recipe())
        provisioner.build(default_recipe())
        assert len(executor.commands) == 6

    def test_empty_library_list_is_a_no_op(self):
        executor = FakeExecutor()
        result = Provisioner(executor).build(recipe_with_libraries([]))
        assert all(c[0] != "pip3" for c in executor.commands)
        assert result.layers[-1].skipped
        assert result.layers[-1].command == []

    def test_unpinned_inputs_are_logged(self, caplog):
        caplog.set_level("WARNING", logger="envprov")
        Provisioner(FakeExecutor()).build(default_recipe())
        assert "library polars" in caplog.text


class TestFailures:
    def test_unresolvable_base_image(self, cache):
        executor = FakeExecutor(unresolvable=True)
        with pytest.raises(ImageResolutionError):
            Provisioner(executor, cache=cache).build(default_recipe())
        assert executor.commands == []
        assert executor.layer_count == 0
        assert cache.list_builds() == []

    def test_component_failure(self):
        executor = FakeExecutor(failing=("rustfmt",))
        with pytest.raises(ComponentInstallError) as exc:
            Provisioner(executor).build(default_recipe())
        assert exc.value.index == 2
        assert exc.value.exit_code == 100
        assert len(executor.commands) == 1
        assert executor.discarded

    def test_missing_package_stops_before_libraries(self, cache):
        executor = FakeExecutor(failing=("no-such-package",))
        with pytest.raises(SystemPackageError) as exc:
            Provisioner(executor, cache=cache).build(recipe_with_libraries(["numpy"], package="no-such-package"))
        assert exc.value.index == 3
        assert all(c[0] != "pip3" for c in executor.commands)
        assert executor.discarded
        assert executor.finalized_with is None
        assert cache.list_builds() == []

    def test_library_failure(self):
        executor = FakeExecutor(failing=("matplotlib",))
        with pytest.raises(LibraryInstallError):
            Provisioner(executor).build(default_recipe())
        assert executor.discarded

    def test_registry_checked_before_pull(self):
        class BrokenRegistry:
            def resolve(self, reference):
                raise ImageResolutionError(reference, "unreachable")

        executor = FakeExecutor()
        with pytest.raises(ImageResolutionError, match="unreachable"):
            Provisioner(executor, registry=BrokenRegistry()).build(default_recipe())
        assert executor.commands == []
