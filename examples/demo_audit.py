"""Demo script for the audit pipeline.

This demonstrates:
1. Config Parser - resource records from raw HCL
2. Audit Engine - scored violations and a cost estimate
3. Delta Engine - what an edit fixes and what it costs
4. Report Generator - text and markdown output

Usage:
    python examples/demo_audit.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from iacguard.audit import AuditEngine, AuditResult, ReportFormat, ReportGenerator
from iacguard.delta import DeltaEngine
from iacguard.parser import parse

console = Console()

SEVERITY_STYLES = {
    "CRITICAL": "bold red",
    "HIGH": "red",
    "MEDIUM": "yellow",
    "LOW": "blue",
    "INFO": "dim",
}


SAMPLE_TEMPLATE = '''provider "aws" {
  region = "us-east-1"
}

resource "aws_s3_bucket" "uploads" {
  bucket = "acme-uploads"
}

resource "aws_security_group" "bastion" {
  name = "bastion"

  ingress {
    from_port   = 22
    to_port     = 22
    protocol    = "tcp"
    cidr_blocks = ["0.0.0.0/0"]
  }
}

resource "aws_db_instance" "staging_db" {
  engine              = "postgres"
  instance_class      = "db.t3.medium"
  allocated_storage   = 50
  multi_az            = true
  publicly_accessible = true
}

resource "aws_ebs_volume" "data" {
  availability_zone = "us-east-1a"
  size              = 500
  type              = "gp2"
}
'''


def demo_parser():
    """Demonstrate the Config Parser."""
    console.print("\n[bold cyan]═══ Config Parser Demo ═══[/bold cyan]\n")

    parsed = parse(SAMPLE_TEMPLATE)

    table = Table(title="Parsed Resources")
    table.add_column("Resource", style="cyan")
    table.add_column("Lines", style="green")
    table.add_column("Properties", style="yellow")

    for resource in parsed.resources:
        table.add_row(
            resource.full_name,
            f"{resource.start_line}-{resource.end_line}",
            ", ".join(resource.properties),
        )

    console.print(table)
    console.print(f"Providers: {', '.join(parsed.providers)}")


async def demo_audit_engine(engine: AuditEngine) -> AuditResult:
    """Demonstrate the Audit Engine."""
    console.print("\n[bold cyan]═══ Audit Engine Demo ═══[/bold cyan]\n")

    result = await engine.audit(SAMPLE_TEMPLATE, template_id="main.tf")

    console.print(f"Score: [bold]{result.score}/100[/bold]")
    console.print(f"Estimated monthly cost: [bold]${result.cost.total_monthly:.2f}[/bold]")

    table = Table(title="Violations")
    table.add_column("Severity")
    table.add_column("Policy", style="cyan")
    table.add_column("Resource", style="green")
    table.add_column("Fixable", style="magenta")

    for group in result.violations:
        style = SEVERITY_STYLES[group.severity.value]
        for v in group.results:
            table.add_row(
                f"[{style}]{group.severity.value}[/{style}]",
                group.code,
                v.resource_ref,
                "✓" if v.auto_fixable else "✗",
            )

    console.print(table)

    costs = Table(title="Cost Breakdown")
    costs.add_column("Resource", style="cyan")
    costs.add_column("Description", style="white")
    costs.add_column("Monthly", style="green", justify="right")
    for item in result.cost.resources:
        costs.add_row(item.name, item.description, f"${item.monthly_cost:.2f}")
    console.print(costs)

    return result


async def demo_delta_engine(engine: AuditEngine):
    """Demonstrate the Delta Engine on a hand-made edit."""
    console.print("\n[bold cyan]═══ Delta Engine Demo ═══[/bold cyan]\n")

    edited = (
        SAMPLE_TEMPLATE
        .replace('type              = "gp2"', 'type              = "gp3"')
        .replace("multi_az            = true", "multi_az            = false")
    )

    diff = await DeltaEngine(engine).compare(SAMPLE_TEMPLATE, edited)

    console.print(Syntax(diff.patch, "diff", theme="monokai"))
    console.print(f"Cost delta: [bold]${diff.cost_delta:+.2f}[/bold]/month")
    console.print(f"Score change: [bold]{diff.security_delta.score_change:+d}[/bold]")

    for group in diff.security_delta.fixed_violations:
        for v in group.results:
            console.print(f"  [green]fixed[/green] {group.code} {v.resource_ref}")
    for group in diff.security_delta.new_violations:
        for v in group.results:
            console.print(f"  [red]new[/red] {group.code} {v.resource_ref}")


def demo_report_generator(result: AuditResult):
    """Demonstrate the Report Generator."""
    console.print("\n[bold cyan]═══ Report Generator Demo ═══[/bold cyan]\n")

    reporter = ReportGenerator()

    console.print("[bold]Text Report (excerpt):[/bold]")
    text_report = reporter.generate([result], ReportFormat.TEXT)
    console.print(Panel(text_report[:1000] + "...", title="Text Report"))

    console.print("\n[bold]Markdown Report (excerpt):[/bold]")
    md_report = reporter.generate([result], ReportFormat.MARKDOWN)
    console.print(Panel(md_report[:800] + "...", title="Markdown Report"))


async def run_demo():
    """Run the complete audit demo."""
    console.print(Panel.fit(
        "[bold magenta]iacguard[/bold magenta]\n"
        "[cyan]Audit, Delta and Reporting Demo[/cyan]",
        border_style="bright_blue",
    ))

    engine = AuditEngine()

    try:
        demo_parser()
        result = await demo_audit_engine(engine)
        await demo_delta_engine(engine)
        demo_report_generator(result)

        console.print(Panel.fit(
            "[bold green]✓ Demo Complete![/bold green]\n\n"
            "Components demonstrated:\n"
            "• Config Parser - resource records from HCL\n"
            "• Audit Engine - security and cost policies\n"
            "• Delta Engine - identity-based violation diff\n"
            "• Report Generator - text, markdown, JSON, SARIF",
            border_style="green",
        ))

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        import traceback
        traceback.print_exc()


if __name__ == "__main__":
    asyncio.run(run_demo())
