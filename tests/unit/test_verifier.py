from fakes import FakeExecutor
from envprov.BUILDERS.verifier import Verifier
from envprov.MODELS.recipe import BaseImage, LibraryInstallStep, Recipe, default_recipe


def test_all_present():
    report = Verifier(FakeExecutor()).verify(default_recipe(), image="rust-data:dev")
    assert report.ok
    assert report.target == "rust-data:dev"
    assert list(report.checks) == [s.describe() for s in default_recipe().steps]


def test_missing_library_reported_not_raised():
    report = Verifier(FakeExecutor(missing=("matplotlib",))).verify(default_recipe())
    assert not report.ok
    assert report.missing == ["install libraries polars pandas numpy matplotlib"]
    assert report.target == "fake"


def test_empty_library_step_not_probed():
    recipe = Recipe(base_image=BaseImage(name="rust", version="1.67"),
                    steps=[LibraryInstallStep(packages=[])])
    report = Verifier(FakeExecutor()).verify(recipe)
    assert report.checks == {}
    assert report.ok
