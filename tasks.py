import os

from invoke import task, Context


IS_CI = os.getenv("GITHUB_ACTIONS") == "true"


@task
def doc(c: Context):
    """Generate documentation"""
    c.run("pdoc -o ./doc aio_cemetery/", echo=True, pty=True)


@task
def fmt(c: Context):
    """Run code formatters"""
    c.run("isort aio_cemetery test", echo=True, pty=True)
    c.run("ruff format aio_cemetery test tasks.py", echo=True, pty=True)


@task
def install(c: Context):
    """Install the package with all extras"""
    c.run("pip install -e '.[test,dev]'", echo=True, pty=True)


@task
def lint(c: Context):
    """Run linter and type checker"""
    c.run("ruff check aio_cemetery/", echo=True, warn=True, pty=True)
    c.run("mypy aio_cemetery/", echo=True, warn=True, pty=True)


@task
def test(c: Context):
    """Run all tests in parallel"""
    _pytest(c, cov=not IS_CI)


@task
def test_cov(c: Context):
    """Run all tests in parallel, with coverage report"""
    _pytest(c, cov=True)


def _pytest(c: Context, *, cov: bool):
    cmd = ["pytest", "-vv", "--numprocesses=auto", "--dist=loadgroup"]

    if cov:
        cmd.append("--cov=aio_cemetery/")

    if cov and IS_CI:
        cmd.append("--cov-report=xml")

    c.run(" ".join(cmd), echo=True, pty=True)

    if cov and not IS_CI:
        c.run("rm .coverage*", echo=True, pty=True)
