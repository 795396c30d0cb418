"""
Command Line Interface for envprov.
"""
import sys
import click

from ..BUILDERS.executors import ContainerExecutor, LocalExecutor
from ..BUILDERS.image_builder import Provisioner
from ..BUILDERS.verifier import Verifier
from ..CONFIG.settings import Settings
from ..CONVERTERS.to_dockerfile import DockerfileConverter
from ..errors import EnvprovError
from ..MODELS.recipe import default_recipe
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..PARSERS.recipe_parser import RecipeParser
from ..REGISTRY.image_cache import ImageCache
from ..REGISTRY.registry_client import RegistryClient
from ..UTILS.logging_setup import configure_logging


def _fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _recipe(ctx):
    """Loads the recipe named by --recipe, or the built-in one."""
    path = ctx.obj.get('recipe_path')
    if not path:
        return default_recipe()
    try:
        return RecipeParser().load(path)
    except FileNotFoundError:
        _fail(f"{path} not found.")
    except EnvprovError as e:
        _fail(str(e))


def _executor(ctx, local: bool):
    settings = ctx.obj['settings']
    if local or settings.engine == "local":
        return LocalExecutor()
    return ContainerExecutor(docker=settings.docker_bin)


@click.group()
@click.option('--recipe', '-r', 'recipe_path', default=None,
              help='Recipe file (YAML or Dockerfile). Defaults to the built-in recipe.')
@click.option('--env-file', default='.env', help='Settings file')
@click.option('--verbose', '-v', is_flag=True, help='Log commands as they run')
@click.pass_context
def cli(ctx, recipe_path, env_file, verbose):
    """
    envprov - provision a toolchain image from a pinned, ordered recipe.

    Steps run strictly in order and the first failure aborts the build.
    """
    ctx.ensure_object(dict)
    try:
        settings = Settings.load(env_file=env_file)
    except EnvprovError as e:
        _fail(str(e))
    configure_logging("DEBUG" if verbose else settings.log_level)
    ctx.obj['settings'] = settings
    ctx.obj['recipe_path'] = recipe_path


@cli.command()
@click.pass_context
def show(ctx):
    """Print the steps of the recipe."""
    recipe = _recipe(ctx)
    click.echo(f"Recipe:      {recipe.name}")
    click.echo(f"Fingerprint: {recipe.fingerprint()}")
    click.echo(f"1. base image {recipe.base_image.reference}")
    for index, step in enumerate(recipe.steps, start=2):
        command = step.command()
        click.echo(f"{index}. {step.describe()}")
        if command:
            click.echo(f"   $ {' '.join(command)}")
    gaps = recipe.unpinned()
    if gaps:
        click.echo("Not pinned:")
        for gap in gaps:
            click.echo(f"   {gap}")


@cli.command()
@click.option('--out', '-o', default=None, help='Output file. Prints to stdout if omitted.')
@click.pass_context
def render(ctx, out):
    """Render the recipe as a Dockerfile."""
    converter = DockerfileConverter(_recipe(ctx))
    if out:
        converter.convert(out)
        click.echo(f"Dockerfile written to {out}")
    else:
        click.echo(converter.render(), nl=False)


@cli.command(name='import')
@click.argument('dockerfile', type=click.Path(exists=True, dir_okay=False))
@click.option('--out', '-o', default=None, help='Output file. Prints to stdout if omitted.')
@click.option('--name', default='envprov', help='Recipe name')
def import_dockerfile(dockerfile, out, name):
    """Convert a Dockerfile into a YAML recipe."""
    parser = RecipeParser()
    try:
        recipe = parser.from_instructions(DockerfileParser().parse(dockerfile), name=name)
    except EnvprovError as e:
        _fail(str(e))
    text = parser.dump(recipe)
    if out:
        with open(out, 'w') as f:
            f.write(text)
        click.echo(f"Recipe written to {out}")
    else:
        click.echo(text, nl=False)


@cli.command()
@click.option('--tag', '-t', default=None, help='Tag for the finished image')
@click.option('--local', is_flag=True, help='Provision this host instead of an image')
@click.pass_context
def build(ctx, tag, local):
    """Apply every step of the recipe, stopping at the first failure."""
    settings = ctx.obj['settings']
    recipe = _recipe(ctx)
    provisioner = Provisioner(
        _executor(ctx, local),
        cache=ImageCache(settings.cache_dir),
        registry=RegistryClient() if settings.resolve_base else None,
    )
    try:
        result = provisioner.build(recipe, tag=tag)
    except EnvprovError as e:
        _fail(str(e))

    click.echo(f"Built {result.recipe_name} from {result.base_reference}")
    for layer in result.layers:
        marker = "skipped" if layer.skipped else (layer.image_id or "applied")[:19]
        click.echo(f"  {layer.index}. {layer.step:50} {marker}")
    if result.image_id:
        click.echo(f"Image: {result.tag or result.image_id}")


@cli.command()
@click.option('--image', default=None, help='Image to check. Defaults to the last build of the recipe.')
@click.option('--local', is_flag=True, help='Check this host instead of an image')
@click.pass_context
def verify(ctx, image, local):
    """Check that every provisioned component is present."""
    recipe = _recipe(ctx)
    executor = _executor(ctx, local)
    if isinstance(executor, ContainerExecutor) and not image:
        entry = ImageCache(ctx.obj['settings'].cache_dir).get(recipe.fingerprint())
        if entry is None or not (entry.tag or entry.image_id):
            _fail("No build recorded for this recipe, pass --image.")
        image = entry.tag or entry.image_id
    report = Verifier(executor).verify(recipe, image=image)

    click.echo(f"{'CHECK':50} {'STATUS':10}")
    click.echo("-" * 61)
    for label, present in report.checks.items():
        click.echo(f"{label:50} {'ok' if present else 'MISSING':10}")
    if not report.ok:
        sys.exit(1)


@cli.command()
@click.argument('reference')
def resolve(reference):
    """Print the registry digest of an image reference."""
    try:
        digest = RegistryClient().resolve(reference)
    except EnvprovError as e:
        _fail(str(e))
    click.echo(digest)


@cli.command()
@click.pass_context
def images(ctx):
    """List images recorded by successful builds."""
    cache = ImageCache(ctx.obj['settings'].cache_dir)
    click.echo(f"{'FINGERPRINT':14} {'RECIPE':15} {'TAG':25} {'BUILT':25}")
    for entry in cache.list_builds():
        click.echo(f"{entry.fingerprint[:12]:14} {entry.recipe_name:15} {entry.tag or '-':25} {entry.built_at:25}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
