"""Demo script for the change-plan agent.

This demonstrates:
1. analyze_and_plan - audit plus proposed fixes in a REVIEWING session
2. apply_changes - accepted fixes written as a new template version
3. Concurrent edits - a stale fix is skipped instead of guessed at
4. restore_template_version - rollback by appending versions

Set IACGUARD_AI_ENABLED=true (and ANTHROPIC_API_KEY) to let Claude propose
fixes for policies without a static template.

Usage:
    python examples/demo_agent.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from iacguard.agents import ChangePlanOrchestrator
from iacguard.config import configure_logging
from iacguard.models import ChangePlan
from iacguard.store import InMemoryTemplateStore

console = Console()

TEMPLATE_ID = "payments/main.tf"

SAMPLE_TEMPLATE = '''resource "aws_s3_bucket" "receipts" {
  bucket = "payments-receipts"
}

resource "aws_instance" "api" {
  ami           = "ami-0abcdef1234567890"
  instance_type = "t3.medium"

  root_block_device {
    volume_size = 30
  }
}

resource "aws_ebs_volume" "ledger" {
  availability_zone = "us-east-1a"
  size              = 250
  type              = "gp2"
}
'''


def show_plan(plan: ChangePlan):
    session = plan.session
    console.print(f"Session: [bold]{session.id}[/bold] ({session.status.value})")
    console.print(
        f"Score: {session.original_score.security} -> {session.projected_score.security}   "
        f"Cost: ${session.original_score.monthly_cost:.2f} -> "
        f"${session.projected_score.monthly_cost:.2f}"
    )

    table = Table(title="Proposed Changes")
    table.add_column("#", style="dim")
    table.add_column("Policy", style="cyan")
    table.add_column("Resource", style="green")
    table.add_column("Source", style="magenta")
    table.add_column("Impact", style="yellow")

    for index, change in enumerate(plan.changes, start=1):
        impact = []
        if change.impact.security_score_change:
            impact.append(f"+{change.impact.security_score_change} score")
        if change.impact.monthly_cost_change:
            impact.append(f"${change.impact.monthly_cost_change:+.2f}/mo")
        table.add_row(
            str(index),
            change.policy_code,
            change.resource_ref,
            change.source.value,
            ", ".join(impact) or "-",
        )

    console.print(table)


async def demo_plan_and_apply(orchestrator: ChangePlanOrchestrator):
    """Plan, then apply everything."""
    console.print("\n[bold cyan]═══ Plan and Apply ═══[/bold cyan]\n")

    plan = await orchestrator.analyze_and_plan(TEMPLATE_ID, SAMPLE_TEMPLATE)
    show_plan(plan)

    result = await orchestrator.apply_changes(plan.session_id, [c.id for c in plan.changes])
    console.print(
        f"\nApplied {result.applied_count} change(s) as version {result.version.version}: "
        f"[dim]{result.version.change_log}[/dim]"
    )
    console.print(Syntax(result.updated_content, "hcl", theme="monokai", line_numbers=True))


async def demo_stale_change(orchestrator: ChangePlanOrchestrator, templates: InMemoryTemplateStore):
    """Plan, let someone else edit the template, then apply."""
    console.print("\n[bold cyan]═══ Stale Changes ═══[/bold cyan]\n")

    await orchestrator.restore_template_version(TEMPLATE_ID, 1)
    plan = await orchestrator.analyze_and_plan(TEMPLATE_ID)
    show_plan(plan)

    content = await templates.get_content(TEMPLATE_ID)
    await templates.set_content(TEMPLATE_ID, content.replace("size              = 250", "size              = 300"))
    console.print("\n[yellow]Someone resized the ledger volume before review finished.[/yellow]")

    result = await orchestrator.apply_changes(plan.session_id, [c.id for c in plan.changes])
    console.print(f"Applied: {result.applied_count}")
    for skipped in result.skipped:
        change = result.session.get_change(skipped.change_id)
        label = change.policy_code if change else skipped.change_id
        console.print(f"  [red]skipped[/red] {label}: {skipped.reason}")


async def demo_versions(orchestrator: ChangePlanOrchestrator):
    """Show the version history."""
    console.print("\n[bold cyan]═══ Version History ═══[/bold cyan]\n")

    table = Table(title=TEMPLATE_ID)
    table.add_column("Version", style="cyan")
    table.add_column("Author", style="magenta")
    table.add_column("Change Log", style="white")

    for version in await orchestrator.get_template_versions(TEMPLATE_ID):
        table.add_row(str(version.version), version.created_by.value, version.change_log)

    console.print(table)


async def run_demo():
    """Run the complete agent demo."""
    configure_logging("WARNING")
    console.print(Panel.fit(
        "[bold magenta]iacguard[/bold magenta]\n"
        "[cyan]Change-Plan Agent Demo[/cyan]",
        border_style="bright_blue",
    ))

    templates = InMemoryTemplateStore()
    orchestrator = ChangePlanOrchestrator(template_store=templates)

    try:
        await demo_plan_and_apply(orchestrator)
        await demo_stale_change(orchestrator, templates)
        await demo_versions(orchestrator)

        console.print(Panel.fit(
            "[bold green]✓ Demo Complete![/bold green]\n\n"
            "Steps demonstrated:\n"
            "• Audit and fix planning in a reviewable session\n"
            "• Apply with per-change validation\n"
            "• Stale fixes skipped after a concurrent edit\n"
            "• Restore through new versions",
            border_style="green",
        ))

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(run_demo())
