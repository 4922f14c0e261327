import asyncio
import json
from contextlib import contextmanager
from functools import wraps
import click
import yaml

from quicklab_backend.database import get_db, get_engine
from quicklab_backend.generator.gitlab_provisioner import RetryPolicy, provision, revoke, teardown
from quicklab_backend.gitlab_utils import GitLabPlatform, PlatformError
from quicklab_backend.interface.transactions import TransactionLog
from quicklab_backend.interface.tree import GroupNode, parse_node
from quicklab_backend.model import Base
from quicklab_backend.repositories.base import RepositoryError
from quicklab_backend.repositories.course_settings import CourseSettingsRepository
from quicklab_backend.repositories.course_tree import CourseTreeRepository
from quicklab_backend.services.transaction_log import TransactionReplayer
from quicklab_backend.settings import settings

@contextmanager
def open_session():
    Base.metadata.create_all(get_engine())
    sessions = get_db()
    db = next(sessions)
    try:
        yield db
    finally:
        sessions.close()

def read_document(file: str):
    # YAML also reads JSON documents
    with open(file, "r") as stream:
        return yaml.safe_load(stream)

def dump_tree(tree: GroupNode, format: str) -> str:
    data = tree.model_dump(mode="json")
    if format == "json":
        return json.dumps(data, indent=2)
    return yaml.safe_dump(data, sort_keys=False)

def handle_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RepositoryError, PlatformError, ValueError) as e:
            raise click.ClickException(str(e))
    return wrapper

@click.group()
def courses():
    pass

@courses.command("list")
@handle_errors
def list_courses():
    with open_session() as db:
        entries = CourseTreeRepository(db).get_course_list()

    if len(entries) == 0:
        click.echo("No courses")

    for entry in entries:
        editions = ", ".join(entry.editions) or "-"
        click.echo(f"{click.style(entry.id, fg='green')} {entry.name or ''} [{editions}]")

@courses.command("import")
@click.option("--file", "-f", required=True, type=click.Path(exists=True, dir_okay=False), help="Course tree as YAML or JSON")
@handle_errors
def import_course(file):
    tree = parse_node(read_document(file))

    if not isinstance(tree, GroupNode) or not tree.is_course:
        raise click.ClickException("The root of a course tree must be a group with subtype course")

    with open_session() as db:
        CourseTreeRepository(db).add_course(tree)

    click.echo(f"Imported course [{click.style(tree.id, fg='green')}]")

@courses.command("show")
@click.argument("course")
@click.argument("edition")
@click.option("--format", "-o", "format", type=click.Choice(["yaml", "json"]), default="yaml")
@handle_errors
def show_course(course, edition, format):
    with open_session() as db:
        tree = CourseTreeRepository(db).get_course_tree(course, edition)

    click.echo(dump_tree(tree, format))

@courses.command("apply-log")
@click.argument("course")
@click.argument("edition")
@click.option("--file", "-f", required=True, type=click.Path(exists=True, dir_okay=False), help="Transaction log as YAML or JSON")
@handle_errors
def apply_log(course, edition, file):
    document = read_document(file)
    log = TransactionLog(log=document) if isinstance(document, list) else TransactionLog.model_validate(document)

    with open_session() as db:
        result = TransactionReplayer(CourseTreeRepository(db)).replay(log, course, edition)

    click.echo(f"Applied {result.applied} of {len(log.log)} transactions")

    if not result.success:
        raise click.ClickException(result.error)

@courses.command("provision")
@click.argument("course")
@click.argument("edition")
@handle_errors
def provision_course(course, edition):
    with open_session() as db:
        tree = CourseTreeRepository(db).get_course_tree(course, edition)
        project_settings = CourseSettingsRepository(db).get_project_settings(course, edition)

    platform = GitLabPlatform.from_settings(settings)
    url = asyncio.run(provision(tree, platform, project_settings, RetryPolicy.from_settings(settings)))

    click.echo(f"Provisioned [{click.style(url, fg='green')}]")

@courses.command("revoke")
@click.argument("course")
@click.argument("edition")
@handle_errors
def revoke_course(course, edition):
    """Remove the GitLab memberships of an edition, keeping its projects."""
    with open_session() as db:
        tree = CourseTreeRepository(db).get_course_tree(course, edition)

    asyncio.run(revoke(tree, GitLabPlatform.from_settings(settings), RetryPolicy.from_settings(settings)))

    click.echo(f"Revoked access to [{click.style(f'{course}/{edition}', fg='green')}]")

@courses.command("clear")
@click.argument("course")
@click.argument("edition")
@click.option("--delete-users", is_flag=True, help="Also delete the GitLab accounts of the edition's users")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@handle_errors
def clear_course(course, edition, delete_users, yes):
    """Delete the GitLab groups and projects of an edition."""
    if not yes and not click.confirm(f"Delete {course}/{edition} from GitLab?"):
        click.echo("Aborted")
        return

    with open_session() as db:
        tree = CourseTreeRepository(db).get_course_tree(course, edition)

    asyncio.run(teardown(tree, GitLabPlatform.from_settings(settings), delete_users, RetryPolicy.from_settings(settings)))

    click.echo(f"Cleared [{click.style(f'{course}/{edition}', fg='red')}]")
