# type: ignore
import os

from invoke import task


@task
def venv(ctx):
    """Create .venv with phonepro and its test and dev extras."""
    print("Syncing development environment with uv...")
    ctx.run("uv sync --all-extras")
    print("Done. External tools used at runtime: nmap, ping, arp, lldpctl, tcpdump")


@task
def clean(ctx):
    """
    Remove files not under version control (build output, caches, .venv).
    Asks before deleting anything.
    """

    ctx.run("git clean -nfdx")

    response = (
        input("Are you sure you want to remove all untracked files? (y/n) [n]: ")
        .strip()
        .lower()
    )
    if response == "y":
        ctx.run("git clean -fdx")


@task
def lint(ctx):
    """
    Static checks: ruff lint and format check on src and tests, mypy on src.
    """
    ctx.run("ruff check src tests", pty=True)
    ctx.run("ruff format --check src tests", pty=True)
    ctx.run("mypy src", pty=True)


@task
def test(ctx, k=None):
    """
    Run tests with coverage of the phonepro package. ``-k`` selects tests.
    """
    select = f" -k {k!r}" if k else ""
    ctx.run(f"pytest --cov=phonepro --cov-report=term-missing{select}", pty=True)


@task
def acs(ctx, port=7547):
    """Run the CWMP listener locally with debug logging."""
    ctx.run(f"LOGLEVEL=DEBUG phonepro acs serve --port {port}", pty=True)


@task
def build_package(ctx):
    """
    Build sdist and wheel with uv.
    """

    ctx.run("rm -rf dist")
    ctx.run("uv build")


@task
def release(ctx):
    """Lint, test, build and publish to PyPI using uv."""
    token = os.getenv("PYPI_TOKEN")
    if not token:
        raise ValueError("PYPI_TOKEN environment variable is not set")

    ctx.run("invoke lint test")
    print("Building package...")
    ctx.run("invoke build-package")

    print("Publishing to PyPI...")
    ctx.run(f"uv publish --token {token}")
