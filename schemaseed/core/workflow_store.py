"""JSON storage for workflows and constraint metadata, with change detection."""
import hashlib
import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from schemaseed.core.schema_types import ConstraintMetadata
from schemaseed.core.workflow_types import Workflow

logger = logging.getLogger(__name__)


@dataclass
class ArtifactMetadata:
    """Bookkeeping stored next to each saved artifact."""
    name: str
    kind: str
    content_hash: str
    last_updated: str
    step_count: int = 0
    rule_count: int = 0
    table_count: int = 0
    version: str = "1.0"


class WorkflowStore:
    """Saves workflows (JSON plus a readable outline) and metadata snapshots to a directory."""

    def __init__(self, workspace_dir: Path):
        self.workspace_dir = Path(workspace_dir)
        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        self.index_path = self.workspace_dir / "index.json"

    def _path(self, name: str, kind: str, suffix: str = ".json") -> Path:
        return self.workspace_dir / f"{name}.{kind}{suffix}"

    # ==================== Workflows ====================

    def save_workflow(self, workflow: Workflow, name: Optional[str] = None) -> str:
        """Save a workflow and return its content hash."""
        name = name or workflow.name
        data = workflow.model_dump(mode="json")
        content_hash = self._compute_hash({k: v for k, v in data.items() if k != "created_at"})

        with open(self._path(name, "workflow"), "w") as f:
            json.dump(data, f, indent=2)
        with open(self._path(name, "workflow", ".txt"), "w") as f:
            f.write(self.render_outline(workflow))

        self._update_index(ArtifactMetadata(
            name=name,
            kind="workflow",
            content_hash=content_hash,
            last_updated=datetime.now().isoformat(),
            step_count=len(workflow.steps),
            table_count=len(workflow.tables),
        ))
        logger.info(f"Saved workflow {name} ({content_hash})")
        return content_hash

    def load_workflow(self, name: str) -> Optional[Workflow]:
        path = self._path(name, "workflow")
        if not path.exists():
            return None
        with open(path, "r") as f:
            return Workflow.model_validate(json.load(f))

    # ==================== Constraint metadata ====================

    def save_metadata(self, metadata: ConstraintMetadata, name: str) -> str:
        data = metadata.model_dump(mode="json")
        content_hash = self._compute_hash({k: v for k, v in data.items() if k != "discovery_timestamp"})

        with open(self._path(name, "constraints"), "w") as f:
            json.dump(data, f, indent=2)

        self._update_index(ArtifactMetadata(
            name=name,
            kind="constraints",
            content_hash=content_hash,
            last_updated=datetime.now().isoformat(),
            rule_count=len(metadata.business_rules),
            table_count=len(metadata.tables),
        ))
        return content_hash

    def load_metadata(self, name: str) -> Optional[ConstraintMetadata]:
        path = self._path(name, "constraints")
        if not path.exists():
            return None
        with open(path, "r") as f:
            return ConstraintMetadata.model_validate(json.load(f))

    # ==================== Index ====================

    def list_artifacts(self, kind: Optional[str] = None) -> List[ArtifactMetadata]:
        entries = [ArtifactMetadata(**entry) for entry in self._load_index().values()]
        if kind:
            entries = [e for e in entries if e.kind == kind]
        return sorted(entries, key=lambda e: (e.kind, e.name))

    def get_artifact(self, name: str, kind: str = "workflow") -> Optional[ArtifactMetadata]:
        entry = self._load_index().get(f"{kind}:{name}")
        return ArtifactMetadata(**entry) if entry else None

    def has_changed(self, name: str, current_hash: str, kind: str = "workflow") -> bool:
        """True when nothing is stored under ``name`` or its hash differs."""
        artifact = self.get_artifact(name, kind)
        return artifact is None or artifact.content_hash != current_hash

    def delete(self, name: str, kind: str = "workflow") -> bool:
        removed = False
        for suffix in (".json", ".txt"):
            path = self._path(name, kind, suffix)
            if path.exists():
                path.unlink()
                removed = True
        index = self._load_index()
        if index.pop(f"{kind}:{name}", None) is not None:
            self._save_index(index)
        return removed

    def _update_index(self, artifact: ArtifactMetadata) -> None:
        index = self._load_index()
        index[f"{artifact.kind}:{artifact.name}"] = asdict(artifact)
        self._save_index(index)

    def _load_index(self) -> Dict[str, Any]:
        if not self.index_path.exists():
            return {}
        with open(self.index_path, "r") as f:
            return json.load(f)

    def _save_index(self, index: Dict[str, Any]) -> None:
        with open(self.index_path, "w") as f:
            json.dump(index, f, indent=2)

    # ==================== Rendering ====================

    @staticmethod
    def render_outline(workflow: Workflow) -> str:
        """Readable plan: one block per step with its mappings and conditions."""
        lines = [
            f"# Workflow: {workflow.name}",
            f"# Generated: {workflow.created_at.isoformat()}",
            f"# Error handling: {workflow.error_handling.strategy} "
            f"(max failures {workflow.error_handling.max_failures})",
            "",
        ]
        for index, step in enumerate(workflow.steps, 1):
            required = " [required]" if step.required else ""
            lines.append(f"{index}. {step.id}: {step.operation} {step.table}{required}")
            if step.dependencies:
                lines.append(f"   after: {', '.join(step.dependencies)}")
            for mapping in step.field_mappings:
                fallback = f" (else {mapping.value!r})" if mapping.fallback_to_value else ""
                lines.append(f"   {mapping.name} <- {mapping.source}{fallback}")
            for condition in step.conditions:
                target = condition.rule_id or f"{condition.table}.{condition.field or '*'}"
                lines.append(f"   ? {condition.type} {target}")
            lines.append(f"   on error: {step.on_error.type}")
            lines.append("")
        return "\n".join(lines)

    @staticmethod
    def _compute_hash(data: Dict[str, Any]) -> str:
        canonical = json.dumps(data, sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()[:16]
