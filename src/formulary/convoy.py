"""Convoy execution: tracked records for every leg, a synthesis anchor, dispatch.

One run moves through::

    Resolved -> ConvoyCreated -> LegsCreated -> SynthesisCreated? -> Dispatching -> Reported

Only the convoy record is fatal. A leg whose record cannot be created is
skipped; link, comment, render and dispatch failures are warnings. Legs
are handled one at a time in declaration order and nothing is rolled
back when a later leg fails.

The executor owns the leg -> synthesis ordering as a :class:`WorkGraph`;
the store is told about every edge but is not the source of truth.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from time import perf_counter

from formulary.collaborators import Dispatcher, PullRequestInfo, PullRequestSource, WorkStore, needs_force_for_id
from formulary.core import DEFAULT_RECORD_PREFIX
from formulary.document import FormulaDocument, Leg, Output, Synthesis
from formulary.errors import CommentError, DispatchError, LinkError, RecordCreationError, RenderError
from formulary.templating import render_or_default, render_template
from formulary.types.core import TemplateContext, WorkspaceConfig

logger = logging.getLogger(__name__)

Echo = Callable[[str], None]

TITLE_LIMIT = 80
_ELLIPSIS = "..."
PROMPT_SEPARATOR = "\n\n---\nBase Prompt:\n"
DEFAULT_SYNTHESIS_DESCRIPTION = "Synthesize findings from all legs into unified output"
LOCAL_TARGET_DESCRIPTION = "local files"


def generate_short_id() -> str:
    """Five lowercase base-32 characters from three random bytes."""
    return base64.b32encode(secrets.token_bytes(3)).decode("ascii")[:5].lower()


def truncate_title(title: str, limit: int = TITLE_LIMIT) -> str:
    if len(title) <= limit:
        return title
    return title[: limit - len(_ELLIPSIS)] + _ELLIPSIS


def choose_target(
    explicit: str,
    workspace_root: Path | None,
    project_dir: Path | None,
    config: WorkspaceConfig,
) -> str:
    """Dispatch target: explicit, else current project, else configured, else the workspace name."""
    if explicit:
        return explicit
    if project_dir is not None:
        return project_dir.name
    configured = config.get("default_target", "")
    if configured:
        return configured
    if workspace_root is not None:
        return workspace_root.name
    return ""


def default_output_dir(review_id: str) -> str:
    return f".reviews/{review_id}"


def default_leg_filename(leg_id: str) -> str:
    return f"{leg_id}-findings.md"


# ---------------------------------------------------------------------------
# Options / results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunOptions:
    """Everything a run needs besides the document; no ambient flags."""

    target: str
    pr_number: int = 0
    dry_run: bool = False
    record_prefix: str = DEFAULT_RECORD_PREFIX
    create_output_dir: bool = True

    @property
    def target_description(self) -> str:
        return f"PR #{self.pr_number}" if self.pr_number > 0 else LOCAL_TARGET_DESCRIPTION


class EdgeKind(str, Enum):
    TRACKS = "tracks"
    BLOCKS = "blocks"


@dataclass(frozen=True)
class Edge:
    """``from_id`` tracks (TRACKS) or waits on (BLOCKS) ``to_id``."""

    from_id: str
    to_id: str
    kind: EdgeKind


@dataclass
class WorkGraph:
    nodes: dict[str, str] = field(default_factory=dict)
    edges: list[Edge] = field(default_factory=list)

    def add_node(self, record_id: str, kind: str) -> None:
        self.nodes[record_id] = kind

    def add_edge(self, from_id: str, to_id: str, kind: EdgeKind) -> Edge:
        edge = Edge(from_id, to_id, kind)
        self.edges.append(edge)
        return edge

    def dependencies_of(self, record_id: str) -> list[str]:
        """Records that must finish before record_id can start."""
        return [e.to_id for e in self.edges if e.from_id == record_id and e.kind is EdgeKind.BLOCKS]

    def tracked_by(self, record_id: str) -> list[str]:
        return [e.to_id for e in self.edges if e.from_id == record_id and e.kind is EdgeKind.TRACKS]


@dataclass
class ConvoyResult:
    convoy_id: str
    review_id: str
    target: str
    total_legs: int
    leg_records: dict[str, str] = field(default_factory=dict)
    synthesis_id: str = ""
    dispatched: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    output_dir: str = ""
    graph: WorkGraph = field(default_factory=WorkGraph)

    @property
    def dispatched_count(self) -> int:
        return len(self.dispatched)


@dataclass(frozen=True)
class PlannedLeg:
    leg: Leg
    output_path: str = ""


@dataclass
class DryRunPlan:
    formula_name: str
    formula_type: str
    target: str
    review_id: str
    pr_number: int = 0
    pr_title: str = ""
    changed_file_count: int = 0
    output_dir: str = ""
    legs: list[PlannedLeg] = field(default_factory=list)
    synthesis_title: str = ""
    synthesis_path: str = ""


# ---------------------------------------------------------------------------
# Template context
# ---------------------------------------------------------------------------


def build_leg_context(
    formula_name: str,
    leg: Leg,
    *,
    options: RunOptions,
    review_id: str,
    pr: PullRequestInfo,
) -> TemplateContext:
    return TemplateContext(
        formula_name=formula_name,
        target_description=options.target_description,
        review_id=review_id,
        pr_number=options.pr_number,
        pr_title=pr.title,
        leg={"id": leg.id, "title": leg.title, "focus": leg.focus, "description": leg.description},
        changed_files=list(pr.changed_files),
        files=[],
    )


def resolve_output_dir(doc: FormulaDocument, formula_name: str, review_id: str) -> str:
    """Rendered output directory, or '' when the document sets none."""
    if doc.output is None or not doc.output.directory:
        return ""
    ctx = {"review_id": review_id, "formula_name": formula_name}
    return render_or_default(doc.output.directory, ctx, default_output_dir(review_id))


def leg_output_path(output: Output, ctx: TemplateContext, output_dir: str) -> str:
    pattern = render_or_default(output.leg_pattern, ctx, default_leg_filename(ctx["leg"]["id"]))
    return os.path.join(output_dir, pattern)


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class ConvoyExecutor:
    """Turns a convoy document into tracked records and dispatched legs."""

    def __init__(
        self,
        store: WorkStore,
        dispatcher: Dispatcher,
        pr_source: PullRequestSource | None = None,
        echo: Echo = print,
        id_factory: Callable[[], str] = generate_short_id,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.pr_source = pr_source
        self.echo = echo
        self.new_id = id_factory

    # -- helpers --------------------------------------------------------

    def _warn(self, message: str, **extra: object) -> None:
        self.echo(f"Warning: {message}")
        logger.warning(message, extra=extra)

    def _fetch_pr(self, options: RunOptions) -> PullRequestInfo:
        if options.pr_number <= 0 or self.pr_source is None:
            return PullRequestInfo()
        return self.pr_source.fetch(options.pr_number)

    def _link(self, graph: WorkGraph, from_id: str, to_id: str, kind: EdgeKind, label: str) -> None:
        graph.add_edge(from_id, to_id, kind)
        store_kind = kind.value if kind is EdgeKind.TRACKS else None
        try:
            self.store.add_dependency(from_id, to_id, store_kind)
        except LinkError as exc:
            self._warn(f"Failed to link {label}: {exc}", record_id=from_id, error=str(exc))

    # -- entry points ---------------------------------------------------

    def execute(self, doc: FormulaDocument, formula_name: str, options: RunOptions) -> ConvoyResult | DryRunPlan | None:
        """Dry-run, refuse a non-convoy type, or run the convoy."""
        if options.dry_run:
            return self.dry_run(doc, formula_name, options)
        if not doc.is_convoy:
            self.explain_manual_steps(doc, formula_name, options.target)
            return None
        return self.run(doc, formula_name, options)

    def explain_manual_steps(self, doc: FormulaDocument, formula_name: str, target: str) -> None:
        self.echo(f"Note: Formula type '{doc.type}' is not executed by 'formulary run'.")
        self.echo("Only 'convoy' formulas can be run.")
        self.echo(f"\nTo run '{formula_name}' manually:")
        self.echo(f"  1. View formula:   formulary show {formula_name}")
        self.echo(f"  2. Cook to proto:  bd cook {formula_name}")
        self.echo(f"  3. Pour molecule:  bd pour {formula_name}")
        self.echo(f"  4. Dispatch:       gt sling <mol-id> {target}")

    def dry_run(self, doc: FormulaDocument, formula_name: str, options: RunOptions) -> DryRunPlan:
        """Print what a run would do. Creates and dispatches nothing."""
        plan = DryRunPlan(
            formula_name=formula_name,
            formula_type=doc.type,
            target=options.target,
            review_id=self.new_id(),
            pr_number=options.pr_number,
        )
        self.echo("[dry-run] Would execute formula:")
        self.echo(f"  Formula: {formula_name}")
        self.echo(f"  Type:    {doc.type}")
        self.echo(f"  Target:  {options.target}")
        if options.pr_number > 0:
            self.echo(f"  PR:      #{options.pr_number}")

        if not doc.is_convoy or not doc.legs:
            return plan

        pr = self._fetch_pr(options)
        plan.pr_title = pr.title
        plan.changed_file_count = len(pr.changed_files)
        if pr.title:
            self.echo(f"  PR Title: {pr.title}")
        if pr.changed_files:
            self.echo(f"  Changed files: {len(pr.changed_files)}")

        plan.output_dir = resolve_output_dir(doc, formula_name, plan.review_id)
        if plan.output_dir:
            self.echo(f"\n  Output directory: {plan.output_dir}")

        self.echo(f"\n  Legs ({len(doc.legs)} parallel):")
        for leg in doc.legs:
            if doc.output is not None and plan.output_dir:
                ctx = build_leg_context(formula_name, leg, options=options, review_id=plan.review_id, pr=pr)
                path = leg_output_path(doc.output, ctx, plan.output_dir)
                plan.legs.append(PlannedLeg(leg, path))
                self.echo(f"    - {leg.id}: {leg.title}\n      -> {path}")
            else:
                plan.legs.append(PlannedLeg(leg))
                self.echo(f"    - {leg.id}: {leg.title}")

        if doc.synthesis is not None:
            plan.synthesis_title = doc.synthesis.title
            self.echo("\n  Synthesis:")
            if doc.output is not None and plan.output_dir:
                plan.synthesis_path = os.path.join(plan.output_dir, doc.output.synthesis)
                self.echo(f"    - {doc.synthesis.title}\n      -> {plan.synthesis_path}")
            else:
                self.echo(f"    - {doc.synthesis.title}")
        return plan

    def run(self, doc: FormulaDocument, formula_name: str, options: RunOptions) -> ConvoyResult:
        """Create convoy, leg and synthesis records, then dispatch every leg.

        Raises RecordCreationError only when the convoy record itself fails.
        """
        started = perf_counter()
        prefix = options.record_prefix
        self.echo(f"Executing convoy formula: {formula_name}\n")

        # ConvoyCreated
        convoy_id = f"{prefix}-cv-{self.new_id()}"
        title = truncate_title(f"{formula_name}: {doc.description}")
        body = f"Formula convoy: {formula_name}\n\nLegs: {len(doc.legs)}\nTarget: {options.target}"
        if options.pr_number > 0:
            body += f"\nPR: #{options.pr_number}"
        try:
            self.store.create("convoy", convoy_id, title, body, force=needs_force_for_id(convoy_id))
        except RecordCreationError as exc:
            logger.error("Convoy record creation failed", extra={"formula": formula_name, "error": str(exc)})
            msg = f"creating convoy record: {exc}"
            raise RecordCreationError(msg) from exc
        self.echo(f"Created convoy: {convoy_id}")

        result = ConvoyResult(
            convoy_id=convoy_id,
            review_id=self.new_id(),
            target=options.target,
            total_legs=len(doc.legs),
        )
        result.graph.add_node(convoy_id, "convoy")

        pr = self._fetch_pr(options)

        result.output_dir = resolve_output_dir(doc, formula_name, result.review_id)
        if result.output_dir and options.create_output_dir:
            try:
                os.makedirs(result.output_dir, exist_ok=True)
            except OSError as exc:
                self._warn(f"Failed to create output directory {result.output_dir}: {exc}", error=str(exc))
            else:
                self.echo(f"  Output directory: {result.output_dir}")

        # LegsCreated
        for leg in doc.legs:
            record_id = f"{prefix}-leg-{self.new_id()}"
            description = self._leg_description(doc, formula_name, leg, options, result, pr)
            try:
                self.store.create("task", record_id, leg.title, description, force=needs_force_for_id(record_id))
            except RecordCreationError as exc:
                self._warn(f"Failed to create leg record for {leg.id}: {exc}", record_id=record_id, error=str(exc))
                result.skipped.append(leg.id)
                continue
            result.graph.add_node(record_id, "task")
            self._link(result.graph, convoy_id, record_id, EdgeKind.TRACKS, f"leg {leg.id}")
            result.leg_records[leg.id] = record_id
            self.echo(f"  Created leg: {leg.id} ({record_id})")

        # SynthesisCreated
        if doc.synthesis is not None:
            self._create_synthesis(doc.synthesis, result, prefix)

        # Dispatching
        self.echo("\nDispatching legs...\n")
        for leg in doc.legs:
            record_id = result.leg_records.get(leg.id)
            if record_id is None:
                continue
            try:
                self.dispatcher.dispatch(record_id, options.target, leg.title, leg.description)
            except DispatchError as exc:
                self._warn(f"Failed to dispatch leg {leg.id}: {exc}", record_id=record_id, error=str(exc))
                result.failed.append(leg.id)
                try:
                    self.store.comment(record_id, f"Failed to dispatch: {exc}")
                except CommentError as comment_exc:
                    self._warn(f"Failed to record dispatch failure on {record_id}: {comment_exc}", record_id=record_id)
                continue
            result.dispatched.append(leg.id)

        # Reported
        self._report(result)
        logger.info(
            "Convoy %s dispatched %d/%d legs",
            convoy_id,
            result.dispatched_count,
            result.total_legs,
            extra={
                "formula": formula_name,
                "record_id": convoy_id,
                "duration_ms": round((perf_counter() - started) * 1000, 1),
            },
        )
        return result

    def _leg_description(
        self,
        doc: FormulaDocument,
        formula_name: str,
        leg: Leg,
        options: RunOptions,
        result: ConvoyResult,
        pr: PullRequestInfo,
    ) -> str:
        base_prompt = doc.base_prompt
        if base_prompt is None:
            return leg.description

        ctx = build_leg_context(formula_name, leg, options=options, review_id=result.review_id, pr=pr)
        if doc.output is not None:
            ctx["output_path"] = leg_output_path(doc.output, ctx, result.output_dir)
            ctx["output"] = {"directory": result.output_dir, "synthesis": doc.output.synthesis}

        try:
            rendered = render_template(base_prompt, ctx)
        except RenderError as exc:
            self._warn(f"Failed to render template for {leg.id}: {exc}", formula=formula_name, error=str(exc))
            rendered = base_prompt
        return f"{leg.description}{PROMPT_SEPARATOR}{rendered}"

    def _create_synthesis(self, synthesis: Synthesis, result: ConvoyResult, prefix: str) -> None:
        synthesis_id = f"{prefix}-syn-{self.new_id()}"
        description = synthesis.description or DEFAULT_SYNTHESIS_DESCRIPTION
        try:
            self.store.create(
                "task", synthesis_id, synthesis.title, description, force=needs_force_for_id(synthesis_id)
            )
        except RecordCreationError as exc:
            self._warn(f"Failed to create synthesis record: {exc}", record_id=synthesis_id, error=str(exc))
            return

        result.synthesis_id = synthesis_id
        result.graph.add_node(synthesis_id, "task")
        self._link(result.graph, result.convoy_id, synthesis_id, EdgeKind.TRACKS, "synthesis")
        # Every created leg, not just the declared depends_on subset.
        for leg_id, leg_record in result.leg_records.items():
            self._link(result.graph, synthesis_id, leg_record, EdgeKind.BLOCKS, f"synthesis to leg {leg_id}")
        self.echo(f"  Created synthesis: {synthesis_id}")

    def _report(self, result: ConvoyResult) -> None:
        self.echo("\nConvoy dispatched!")
        self.echo(f"  Convoy:    {result.convoy_id}")
        self.echo(f"  Legs:      {result.dispatched_count} dispatched (of {result.total_legs})")
        if result.synthesis_id:
            self.echo(f"  Synthesis: {result.synthesis_id} (blocked until legs complete)")
        self.echo(f"\n  Track progress: bd show {result.convoy_id}")
