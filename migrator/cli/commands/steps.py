# migrator/cli/commands/steps.py

"""
One-shot step flags for migrations made of several scripts.

    migrator steps check deploy-diamond   # exit 1 if already done
    migrator steps mark deploy-diamond
"""

import click
import os
import sys

from ...core.errors import StepAlreadyDoneError
from ...progress.steps import StepLedger
from .migrate import handle_errors


DEFAULT_STEPS_FILE = "processed/steps.json"


@click.group()
@click.option('--file', 'steps_file', type=click.Path(dir_okay=False),
              default=lambda: os.environ.get("MIGRATOR_STEPS_FILE", DEFAULT_STEPS_FILE),
              show_default=DEFAULT_STEPS_FILE, help='Step flag file')
@click.pass_context
def steps(ctx, steps_file):
    """One-shot step flags"""
    ctx.ensure_object(dict)
    ctx.obj['step_ledger'] = StepLedger(steps_file)


@steps.command('check')
@click.argument('step')
@click.pass_context
@handle_errors
def check_step(ctx, step):
    """Exit 1 if STEP is already marked done"""
    try:
        ctx.obj['step_ledger'].ensure_not_done(step)
    except StepAlreadyDoneError as e:
        click.echo(f"⏭️  {e}")
        sys.exit(1)
    click.echo(f"▶️  Step '{step}' not done yet")


@steps.command('mark')
@click.argument('step')
@click.option('--undo', is_flag=True, help='Clear the flag instead of setting it')
@click.pass_context
@handle_errors
def mark_step(ctx, step, undo):
    """Mark STEP as done"""
    ctx.obj['step_ledger'].mark_done(step, value=not undo)
    click.echo(f"{'↩️  Cleared' if undo else '✅ Marked'} step '{step}'")


@steps.command('list')
@click.pass_context
@handle_errors
def list_steps(ctx):
    """List recorded steps"""
    recorded = ctx.obj['step_ledger'].steps()
    if not recorded:
        click.echo("📭 No steps recorded")
        return
    for step, done in sorted(recorded.items()):
        click.echo(f"   {'✅' if done else '⬜'} {step}")
