"""Hierarchy Compiler: per-project node -> section -> project summary trees.

Every file gets a node summary (kept verbatim when it already fits under the
per-summary cap), nodes are clustered into sections, and the sections are
summarized into a single project summary. Each summary records the hash of
the input it was built from, which drives reuse and staleness:

    absent -> pending -> compiled -> stale -> pending -> compiled

Summary sizes are monotone towards the root: a parent's token target never
exceeds the combined tokens of its children, so node-level totals >=
section-level totals >= the project summary.

Writes to one project's tree are serialized by a per-project lock; different
projects compile in parallel. Upstream failures never abort a compile or an
update: the previous summary is kept (or the source text truncated) and the
hierarchy is reported as stale.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

from membank.concurrency import ProjectLocks, gather_bounded, with_deadline
from membank.config import ConcurrencyConfig, HierarchyConfig
from membank.exceptions import NotFoundError, UpstreamServiceError
from membank.hierarchy.clustering import cluster_nodes
from membank.hierarchy.models import (
    CompilationOptions,
    StaleHierarchyWarning,
    Summary,
    SummaryHierarchy,
    SummaryLevel,
    SummaryMetadata,
    SummaryState,
    SummaryType,
)
from membank.hierarchy.validate import validate_hierarchy
from membank.llm.base import ContentService, SummarizationOptions, SummaryStyle
from membank.search.models import EnhancedFile, content_hash, utcnow
from membank.storage.base import FileRepository, SummaryRepository
from membank.tokens import TokenEstimator, truncate_words
from membank.validation import validate_file_name, validate_max_tokens, validate_project_name

logger = logging.getLogger("membank.hierarchy")


def node_id(project_name: str, file_name: str) -> str:
    return f"{project_name}:node:{file_name}"


def section_id(project_name: str, key: str) -> str:
    return f"{project_name}:section:{key}"


def root_id(project_name: str) -> str:
    return f"{project_name}:project:root"


def _children_hash(children: list[Summary]) -> str:
    return content_hash("\n".join(f"{c.id}={c.metadata.source_hash}" for c in children))


@dataclass
class _Settings:
    """CompilationOptions resolved against HierarchyConfig."""

    cap: int
    ratio: float
    summary_type: SummaryType
    style: SummaryStyle
    focus_areas: list[str] = field(default_factory=list)
    force: bool = False


@dataclass
class _Outcome:
    """Summaries produced by one pass, plus what actually changed."""

    summaries: list[Summary]
    changed: set[str] = field(default_factory=set)
    failed: list[str] = field(default_factory=list)


class HierarchyCompiler:
    """Builds and incrementally maintains summary hierarchies.

    Usage:
        compiler = HierarchyCompiler(files, summaries, content_service)
        hierarchy = await compiler.compile_project("alpha")
        hierarchy = await compiler.update_hierarchy("alpha", ["notes.md"])
        level = await compiler.get_optimal_summary_level("alpha", 2000)
    """

    def __init__(
        self,
        file_repository: FileRepository,
        summary_repository: SummaryRepository,
        content_service: ContentService,
        config: HierarchyConfig | None = None,
        concurrency: ConcurrencyConfig | None = None,
        locks: ProjectLocks | None = None,
    ) -> None:
        self.file_repository = file_repository
        self.summary_repository = summary_repository
        self.content_service = content_service
        self.config = config or HierarchyConfig()
        self.concurrency = concurrency or ConcurrencyConfig()
        self.locks = locks or ProjectLocks()

    # -------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------

    async def compile_project(
        self,
        project_name: str,
        options: CompilationOptions | None = None,
    ) -> SummaryHierarchy:
        """Compile the full hierarchy for a project.

        Summaries whose inputs are unchanged are reused unless
        ``options.force_recompile`` is set.

        Raises:
            ValidationError: If the project name is malformed.
            NotFoundError: If the project is unknown or has no files.
        """
        validate_project_name(project_name)
        settings = self._resolve(options or CompilationOptions())

        async with self.locks.get(project_name):
            files = await self.file_repository.list_files(project_name)
            if not files:
                await self.summary_repository.delete_project(project_name)
                raise NotFoundError(f"Project '{project_name}' has no files to summarize")

            existing = await self.summary_repository.get_hierarchy(project_name)
            if existing and not settings.force and self._is_fresh(existing, files):
                logger.info(f"Hierarchy for '{project_name}' is up to date")
                return existing

            previous = {s.id: s for s in existing.all_summaries()} if existing else {}
            node_pass = await self._compile_nodes(project_name, files, settings, previous)
            nodes = node_pass.summaries
            section_pass, clusters = await self._compile_sections(
                project_name, nodes, settings, previous
            )
            root_pass = await self._compile_root(
                project_name, section_pass.summaries, settings, previous.get(root_id(project_name))
            )

            failed = node_pass.failed + section_pass.failed + root_pass.failed
            await self._store(
                project_name, root_pass.summaries[0], section_pass.summaries, clusters, previous
            )

            logger.info(
                f"Compiled hierarchy for '{project_name}': {len(nodes)} nodes, "
                f"{len(clusters)} sections ({len(node_pass.changed)} nodes recomputed)"
            )
            return await self._load(project_name, failed)

    async def update_hierarchy(
        self,
        project_name: str,
        changed_files: list[str],
    ) -> SummaryHierarchy:
        """Recompute only what `changed_files` affect.

        Node summaries of changed files are rebuilt (or dropped for deleted
        files), then the sections containing them. The project summary is
        rebuilt only when the section set changed, the share of section
        tokens that changed exceeds ``churn_threshold``, or the sections
        shrank below the size of the current root. A node that fails to
        recompile keeps its previous summary, marked stale.

        Raises:
            ValidationError: If a project or file name is malformed.
            NotFoundError: If the project has no hierarchy yet.
        """
        validate_project_name(project_name)
        for name in changed_files:
            validate_file_name(name)
        settings = self._resolve(CompilationOptions())

        async with self.locks.get(project_name):
            existing = await self.summary_repository.get_hierarchy(project_name)
            if existing is None:
                raise NotFoundError(
                    f"No hierarchy for project '{project_name}', compile it first"
                )

            previous = {s.id: s for s in existing.all_summaries()}
            nodes = {s.metadata.source_files[0]: s for s in existing.nodes}

            to_compile: list[EnhancedFile] = []
            removed: list[str] = []
            for name in sorted(set(changed_files)):
                try:
                    file = await self.file_repository.get_file(project_name, name)
                except NotFoundError:
                    if name in nodes:
                        removed.append(name)
                    continue
                node = nodes.get(name)
                if (
                    node is not None
                    and node.metadata.state == SummaryState.COMPILED
                    and node.metadata.source_hash == file.effective_hash()
                ):
                    continue
                to_compile.append(file)

            if not to_compile and not removed:
                return existing

            pending = [
                self._with_state(nodes[f.name], SummaryState.PENDING)
                for f in to_compile
                if f.name in nodes
            ]
            if pending:
                await self.summary_repository.put_many(pending)

            node_pass = await self._compile_nodes(project_name, to_compile, settings, previous)
            for node in node_pass.summaries:
                nodes[node.metadata.source_files[0]] = node
            for name in removed:
                del nodes[name]

            if not nodes:
                await self.summary_repository.delete_project(project_name)
                raise NotFoundError(f"Project '{project_name}' has no files left to summarize")

            node_list = sorted(nodes.values(), key=lambda n: n.id)
            section_pass, clusters = await self._compile_sections(
                project_name, node_list, settings, previous
            )
            sections = section_pass.summaries
            old_root = existing.root_summary

            if self._needs_new_root(existing, sections, section_pass.changed):
                root_pass = await self._compile_root(project_name, sections, settings, old_root)
                root = root_pass.summaries[0]
                failed = node_pass.failed + section_pass.failed + root_pass.failed
            else:
                root = old_root
                failed = node_pass.failed + section_pass.failed

            await self._store(project_name, root, sections, clusters, previous)
            logger.info(
                f"Updated hierarchy for '{project_name}': {len(node_pass.changed)} nodes, "
                f"{len(section_pass.changed)} sections recomputed, {len(removed)} removed"
            )
            return await self._load(project_name, failed)

    async def get_optimal_summary_level(
        self,
        project_name: str,
        max_tokens: int,
    ) -> list[Summary]:
        """The coarsest level whose total cost fits `max_tokens`.

        Tries the project summary, then all sections, then all nodes. When
        not even the nodes fit, returns the subset of nodes picked smallest
        first until the budget is spent (possibly empty).

        Raises:
            ValidationError: If `max_tokens` is not positive.
            NotFoundError: If the project has no hierarchy.
        """
        validate_project_name(project_name)
        validate_max_tokens(max_tokens)
        hierarchy = await self.get_hierarchy(project_name)

        for level in (SummaryLevel.PROJECT, SummaryLevel.SECTION, SummaryLevel.NODE):
            summaries = hierarchy.summaries_at(level)
            if summaries and sum(s.tokens for s in summaries) <= max_tokens:
                return summaries

        picked: list[Summary] = []
        used = 0
        for node in sorted(hierarchy.nodes, key=lambda n: (n.tokens, n.id)):
            if used + node.tokens > max_tokens:
                break
            picked.append(node)
            used += node.tokens
        return sorted(picked, key=lambda n: n.id)

    async def get_hierarchy(self, project_name: str) -> SummaryHierarchy:
        """Load the stored hierarchy, with warnings for any stale summaries.

        Raises:
            NotFoundError: If the project has no hierarchy.
        """
        validate_project_name(project_name)
        hierarchy = await self._load(project_name, [])
        if hierarchy is None:
            raise NotFoundError(f"No hierarchy for project '{project_name}'")
        return hierarchy

    async def detect_stale(self, project_name: str) -> list[str]:
        """Mark summaries whose sources changed since they were compiled.

        Compares each node's recorded source hash with the current file and
        marks changed or deleted nodes stale, along with their section and
        the project summary. New files without a node mark the project
        summary stale. Returns the ids newly marked stale.
        """
        validate_project_name(project_name)
        async with self.locks.get(project_name):
            hierarchy = await self.summary_repository.get_hierarchy(project_name)
            if hierarchy is None:
                raise NotFoundError(f"No hierarchy for project '{project_name}'")

            files = {f.name: f for f in await self.file_repository.list_files(project_name)}
            by_id = {s.id: s for s in hierarchy.all_summaries()}
            affected: set[str] = set()

            for node in hierarchy.nodes:
                file = files.get(node.metadata.source_files[0])
                if file is None or file.effective_hash() != node.metadata.source_hash:
                    summary_id: str | None = node.id
                    while summary_id is not None:
                        affected.add(summary_id)
                        summary_id = by_id[summary_id].metadata.parent_summary_id

            covered = {n.metadata.source_files[0] for n in hierarchy.nodes}
            if set(files) - covered:
                affected.add(hierarchy.root_summary.id)

            marked = sorted(
                sid for sid in affected if by_id[sid].metadata.state != SummaryState.STALE
            )
            if marked:
                await self.summary_repository.put_many(
                    [self._with_state(by_id[sid], SummaryState.STALE) for sid in marked]
                )
                logger.warning(f"{len(marked)} stale summaries in '{project_name}'")
            return marked

    async def delete_project(self, project_name: str) -> int:
        """Remove every summary of a project."""
        validate_project_name(project_name)
        async with self.locks.get(project_name):
            deleted = await self.summary_repository.delete_project(project_name)
        logger.info(f"Deleted {deleted} summaries for '{project_name}'")
        return deleted

    # -------------------------------------------------------------------
    # Passes
    # -------------------------------------------------------------------

    async def _compile_nodes(
        self,
        project_name: str,
        files: list[EnhancedFile],
        settings: _Settings,
        previous: dict[str, Summary],
    ) -> _Outcome:
        outcome = _Outcome(summaries=[])
        todo: list[EnhancedFile] = []

        for file in files:
            prev = previous.get(node_id(project_name, file.name))
            if (
                not settings.force
                and prev is not None
                and prev.metadata.state in (SummaryState.COMPILED, SummaryState.PENDING)
                and prev.metadata.source_hash == file.effective_hash()
            ):
                outcome.summaries.append(self._with_state(prev, SummaryState.COMPILED))
            else:
                todo.append(file)

        results = await gather_bounded(
            [lambda f=f: self._summarize_file(project_name, f, settings) for f in todo],
            self.concurrency.max_concurrency,
        )
        for file, result in zip(todo, results):
            sid = node_id(project_name, file.name)
            if isinstance(result, Summary):
                result.metadata.created = (
                    previous[sid].metadata.created if sid in previous else result.metadata.created
                )
                outcome.summaries.append(result)
                outcome.changed.add(sid)
                continue
            if not isinstance(result, UpstreamServiceError):
                raise result
            logger.warning(f"Keeping previous summary of {project_name}/{file.name}: {result}")
            outcome.failed.append(sid)
            if sid in previous:
                outcome.summaries.append(self._with_state(previous[sid], SummaryState.STALE))
            else:
                outcome.summaries.append(
                    await self._fallback_node(project_name, file, settings)
                )
                outcome.changed.add(sid)

        outcome.summaries.sort(key=lambda s: s.id)
        return outcome

    async def _compile_sections(
        self,
        project_name: str,
        nodes: list[Summary],
        settings: _Settings,
        previous: dict[str, Summary],
    ) -> tuple[_Outcome, dict[str, list[Summary]]]:
        """Returns the section pass and the members of each section id."""
        by_key = cluster_nodes(nodes, self.config.cluster_by)
        clusters = {section_id(project_name, key): members for key, members in by_key.items()}
        outcome = _Outcome(summaries=[])
        todo: list[str] = []

        for sid, members in clusters.items():
            prev = previous.get(sid)
            if (
                not settings.force
                and prev is not None
                and prev.metadata.state == SummaryState.COMPILED
                and prev.metadata.source_hash == _children_hash(members)
            ):
                outcome.summaries.append(prev)
            else:
                todo.append(sid)

        results = await gather_bounded(
            [
                lambda sid=sid: self._summarize_children(
                    project_name, sid, SummaryLevel.SECTION, clusters[sid], settings
                )
                for sid in todo
            ],
            self.concurrency.max_concurrency,
        )
        for sid, result in zip(todo, results):
            if isinstance(result, Summary):
                if sid in previous:
                    result.metadata.created = previous[sid].metadata.created
                outcome.summaries.append(result)
                outcome.changed.add(sid)
                continue
            if not isinstance(result, UpstreamServiceError):
                raise result
            logger.warning(f"Section summary {sid} failed: {result}")
            outcome.failed.append(sid)
            member_tokens = sum(m.tokens for m in clusters[sid])
            if sid in previous and previous[sid].tokens <= member_tokens * (
                1 + self.config.ratio_tolerance
            ):
                outcome.summaries.append(self._with_state(previous[sid], SummaryState.STALE))
            else:
                outcome.summaries.append(
                    await self._fallback_parent(
                        project_name, sid, SummaryLevel.SECTION, clusters[sid], settings
                    )
                )
                outcome.changed.add(sid)

        outcome.summaries.sort(key=lambda s: s.id)
        return outcome, clusters

    async def _compile_root(
        self,
        project_name: str,
        sections: list[Summary],
        settings: _Settings,
        previous: Summary | None,
    ) -> _Outcome:
        rid = root_id(project_name)
        if (
            not settings.force
            and previous is not None
            and previous.metadata.state == SummaryState.COMPILED
            and previous.metadata.source_hash == _children_hash(sections)
        ):
            return _Outcome(summaries=[previous])

        try:
            root = await self._summarize_children(
                project_name, rid, SummaryLevel.PROJECT, sections, settings
            )
        except UpstreamServiceError as e:
            logger.warning(f"Project summary of '{project_name}' failed: {e}")
            input_tokens = sum(s.tokens for s in sections)
            if previous is not None and previous.tokens <= input_tokens * (
                1 + self.config.ratio_tolerance
            ):
                return _Outcome(
                    summaries=[self._with_state(previous, SummaryState.STALE)], failed=[rid]
                )
            root = await self._fallback_parent(
                project_name, rid, SummaryLevel.PROJECT, sections, settings
            )
            return _Outcome(summaries=[root], changed={rid}, failed=[rid])

        if previous is not None:
            root.metadata.created = previous.metadata.created
        return _Outcome(summaries=[root], changed={rid})

    # -------------------------------------------------------------------
    # Summarization steps
    # -------------------------------------------------------------------

    async def _summarize_file(
        self, project_name: str, file: EnhancedFile, settings: _Settings
    ) -> Summary:
        label = f"{project_name}/{file.name}"
        tokens = await self._count(file.content, label)

        if tokens <= settings.cap:
            content = file.content
            summary_type = SummaryType.EXTRACTIVE
        else:
            target = self._target(tokens, settings)
            options = SummarizationOptions(
                level=SummaryLevel.NODE,
                type=settings.summary_type,
                max_tokens=target,
                style=settings.style,
                focus_areas=settings.focus_areas,
            )
            content = await with_deadline(
                self.content_service.summarize(file.content, options),
                self.concurrency.call_timeout_seconds,
                f"summarize {label}",
            )
            content = await self._fit(content, target, label)
            summary_type = settings.summary_type

        return self._make_summary(
            project_name,
            node_id(project_name, file.name),
            SummaryLevel.NODE,
            summary_type,
            content,
            await self._count(content, label),
            tokens,
            source_files=[file.name],
            source_hash=file.effective_hash(),
            tags=sorted(set(file.metadata.tags)),
            task=file.metadata.task,
        )

    async def _summarize_children(
        self,
        project_name: str,
        summary_id: str,
        level: SummaryLevel,
        children: list[Summary],
        settings: _Settings,
    ) -> Summary:
        input_tokens = sum(c.tokens for c in children)
        target = self._target(input_tokens, settings)

        content = ""
        if target > 0:
            combined = "\n\n".join(c.content for c in children if c.content)
            options = SummarizationOptions(
                level=level,
                type=SummaryType.HIERARCHICAL,
                max_tokens=target,
                style=settings.style,
                preserve_structure=level == SummaryLevel.PROJECT,
                focus_areas=settings.focus_areas,
            )
            content = await with_deadline(
                self.content_service.summarize(combined, options),
                self.concurrency.call_timeout_seconds,
                f"summarize {summary_id}",
            )
            content = await self._fit(content, target, summary_id)

        return self._make_summary(
            project_name,
            summary_id,
            level,
            SummaryType.HIERARCHICAL,
            content,
            await self._count(content, summary_id),
            input_tokens,
            source_files=sorted({f for c in children for f in c.metadata.source_files}),
            source_hash=_children_hash(children),
            tags=sorted({t for c in children for t in c.metadata.tags}),
        )

    async def _fallback_node(
        self, project_name: str, file: EnhancedFile, settings: _Settings
    ) -> Summary:
        """Truncated source text, used when a new file cannot be summarized."""
        label = f"{project_name}/{file.name}"
        tokens = await self._count(file.content, label)
        content = await self._fit(file.content, min(tokens, settings.cap), label)
        summary = self._make_summary(
            project_name,
            node_id(project_name, file.name),
            SummaryLevel.NODE,
            SummaryType.EXTRACTIVE,
            content,
            await self._count(content, label),
            tokens,
            source_files=[file.name],
            source_hash="",
            tags=sorted(set(file.metadata.tags)),
            task=file.metadata.task,
        )
        summary.metadata.state = SummaryState.STALE
        return summary

    async def _fallback_parent(
        self,
        project_name: str,
        summary_id: str,
        level: SummaryLevel,
        children: list[Summary],
        settings: _Settings,
    ) -> Summary:
        """Truncated concatenation of the children, used when summarizing fails."""
        input_tokens = sum(c.tokens for c in children)
        combined = "\n\n".join(c.content for c in children if c.content)
        content = await self._fit(combined, self._target(input_tokens, settings), summary_id)
        summary = self._make_summary(
            project_name,
            summary_id,
            level,
            SummaryType.EXTRACTIVE,
            content,
            await self._count(content, summary_id),
            input_tokens,
            source_files=sorted({f for c in children for f in c.metadata.source_files}),
            source_hash="",
            tags=sorted({t for c in children for t in c.metadata.tags}),
        )
        summary.metadata.state = SummaryState.STALE
        return summary

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _resolve(self, options: CompilationOptions) -> _Settings:
        cap = options.max_tokens_per_summary or self.config.max_tokens_per_summary
        validate_max_tokens(cap)
        return _Settings(
            cap=cap,
            ratio=options.compression_ratio or self.config.compression_ratio,
            summary_type=options.summary_type or SummaryType(self.config.summary_type),
            style=SummaryStyle(options.style or self.config.style),
            focus_areas=list(options.focus_areas),
            force=options.force_recompile,
        )

    @staticmethod
    def _target(input_tokens: int, settings: _Settings) -> int:
        """Token target for a summary of `input_tokens` tokens of input.

        Input that fits under the cap keeps its size; larger input is
        summarized to the compression ratio, never above the cap.
        """
        if input_tokens <= settings.cap:
            return input_tokens
        return min(settings.cap, max(1, math.ceil(input_tokens * settings.ratio)))

    async def _count(self, text: str, label: str) -> int:
        if not text:
            return 0
        try:
            return await with_deadline(
                self.content_service.count_tokens(text),
                self.concurrency.call_timeout_seconds,
                f"count tokens {label}",
            )
        except UpstreamServiceError as e:
            logger.warning(f"Estimating tokens for {label}: {e}")
            return TokenEstimator.estimate(text)

    async def _fit(self, text: str, max_tokens: int, label: str) -> str:
        """Cut `text` word by word until it counts at most `max_tokens`."""
        tokens = await self._count(text, label)
        while tokens > max_tokens and text:
            words = len(text.split())
            keep = min(words - 1, int(words * max_tokens / tokens))
            text = truncate_words(text, max(0, keep))
            tokens = await self._count(text, label)
        return text

    @staticmethod
    def _make_summary(
        project_name: str,
        summary_id: str,
        level: SummaryLevel,
        summary_type: SummaryType,
        content: str,
        tokens: int,
        source_tokens: int,
        source_files: list[str],
        source_hash: str,
        tags: list[str] | None = None,
        task: str | None = None,
    ) -> Summary:
        now = utcnow()
        return Summary(
            id=summary_id,
            project_name=project_name,
            content=content,
            metadata=SummaryMetadata(
                level=level,
                type=summary_type,
                source_files=source_files,
                tokens=tokens,
                source_tokens=source_tokens,
                compression_ratio=round(tokens / source_tokens, 4) if source_tokens else 1.0,
                created=now,
                updated=now,
                state=SummaryState.COMPILED,
                source_hash=source_hash,
                tags=tags or [],
                task=task,
            ),
        )

    @staticmethod
    def _with_state(summary: Summary, state: SummaryState) -> Summary:
        copy = summary.model_copy(deep=True)
        copy.metadata.state = state
        return copy

    @staticmethod
    def _is_fresh(hierarchy: SummaryHierarchy, files: list[EnhancedFile]) -> bool:
        if hierarchy.stale:
            return False
        hashes = {n.metadata.source_files[0]: n.metadata.source_hash for n in hierarchy.nodes}
        return hashes == {f.name: f.effective_hash() for f in files}

    def _needs_new_root(
        self,
        existing: SummaryHierarchy,
        sections: list[Summary],
        changed: set[str],
    ) -> bool:
        if existing.root_summary.metadata.state != SummaryState.COMPILED:
            return True
        if {s.id for s in existing.sections} != {s.id for s in sections}:
            return True
        total = sum(s.tokens for s in sections)
        # The kept root may not outgrow sections that shrank
        if existing.root_summary.tokens > total * (1 + self.config.ratio_tolerance):
            return True
        churned = sum(s.tokens for s in sections if s.id in changed)
        churn = churned / total if total else float(bool(changed))
        logger.debug(f"Section churn for '{existing.project_name}': {churn:.2f}")
        return churn > self.config.churn_threshold

    async def _store(
        self,
        project_name: str,
        root: Summary,
        sections: list[Summary],
        clusters: dict[str, list[Summary]],
        previous: dict[str, Summary],
    ) -> None:
        """Link, validate and persist a tree, dropping summaries no longer in it."""
        root = root.model_copy(deep=True)
        root.metadata.parent_summary_id = None
        root.metadata.child_summary_ids = [s.id for s in sections]
        tree = [root]

        for section in sections:
            section = section.model_copy(deep=True)
            section.metadata.parent_summary_id = root.id
            section.metadata.child_summary_ids = [m.id for m in clusters[section.id]]
            tree.append(section)

        for sid, members in clusters.items():
            for member in members:
                node = member.model_copy(deep=True)
                node.metadata.parent_summary_id = sid
                node.metadata.child_summary_ids = []
                tree.append(node)

        validate_hierarchy(tree, self.config.ratio_tolerance)

        await self.summary_repository.replace_tree(
            project_name,
            [s for s in tree if s != previous.get(s.id)],
            sorted(set(previous) - {s.id for s in tree}),
        )

    async def _load(self, project_name: str, failed: list[str]) -> SummaryHierarchy | None:
        hierarchy = await self.summary_repository.get_hierarchy(project_name)
        if hierarchy is None:
            return None
        if failed:
            hierarchy.warnings.append(
                StaleHierarchyWarning(
                    project_name=project_name,
                    summary_ids=sorted(failed),
                    reason="summarization failed, previous summaries were kept",
                )
            )
        not_compiled = sorted(
            s.id for s in hierarchy.all_summaries()
            if s.metadata.state != SummaryState.COMPILED and s.id not in failed
        )
        if not_compiled:
            hierarchy.warnings.append(
                StaleHierarchyWarning(
                    project_name=project_name,
                    summary_ids=not_compiled,
                    reason="sources changed since these summaries were compiled",
                )
            )
        return hierarchy
