import logging
import click

from .courses import courses

@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
def cli(verbose):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

cli.add_command(courses,"courses")

if __name__ == '__main__':
    cli()
