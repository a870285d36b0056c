"""
Output Directory Writer
=======================
Writes the package of a completed run to a directory.

Directory layout:
    <output_dir>/
    ├── final.md                          # assembled final document
    ├── deliverables/
    │   ├── 01_research_task-0-ab12cd.md  # one file per generated deliverable
    │   └── ...
    ├── images/
    │   └── task-0-ab12cd.png             # decoded generated images (if any)
    ├── summary.json                      # full machine-readable summary
    └── README.md                         # human-readable summary

Called from cli.py after SwarmOrchestrator.run() returns.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from datetime import datetime
from pathlib import Path

from .models import GeneratedDeliverable, GeneratedImage, SwarmSummary

logger = logging.getLogger("tenderswarm.output_writer")

_MIME_EXTS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}

_UNSAFE = re.compile(r"[^a-zA-Z0-9_.-]+")


def safe_name(text: str) -> str:
    """Filesystem-safe fragment (no separators, no leading dots)."""
    return _UNSAFE.sub("_", text).strip("._") or "item"


def write_output_dir(summary: SwarmSummary, output_dir: str | Path,
                     brief_text: str = "") -> Path:
    """
    Write final document, deliverables, images and summary files to output_dir.
    Creates the directory (and parents) if it does not exist.
    Returns the resolved absolute Path of the output directory.
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    (out / "final.md").write_text(summary.final_deliverable, encoding="utf-8")
    logger.info(f"Wrote final.md ({len(summary.final_deliverable)} chars)")

    file_map: dict[str, str] = {}  # task_id -> deliverable filename
    if summary.deliverables:
        deliverables_dir = out / "deliverables"
        deliverables_dir.mkdir(exist_ok=True)
        for n, d in enumerate(summary.deliverables, start=1):
            filename = f"{n:02d}_{d.category.value}_{safe_name(d.task_id)}.md"
            (deliverables_dir / filename).write_text(_render_deliverable(d), encoding="utf-8")
            file_map[d.task_id] = f"deliverables/{filename}"

    image_files = _write_images(summary.generated_images, out / "images")

    _write_summary_json(summary, out, file_map, image_files, brief_text)
    _write_readme(summary, out, file_map, image_files, brief_text)

    resolved = out.resolve()
    logger.info(f"Output written to: {resolved}")
    return resolved


# ── Internal helpers ──────────────────────────────────────────────────────────

def _render_deliverable(d: GeneratedDeliverable) -> str:
    header = [
        f"# {d.task_description}",
        "",
        f"**Category**: {d.category.value}  ",
        f"**Provider**: {d.provider_name} (`{d.provider}`)  ",
        f"**Tokens**: {d.tokens_used}  ",
        "",
    ]
    return "\n".join(header) + d.content.rstrip() + "\n"


def _write_images(images: list[GeneratedImage], images_dir: Path) -> dict[str, str]:
    """Decode each image into images_dir. Undecodable payloads are logged and skipped."""
    written: dict[str, str] = {}
    for image in images:
        try:
            data = base64.b64decode(image.base64_data, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Skipping image {image.id} for {image.task_id}: {e}")
            continue
        images_dir.mkdir(parents=True, exist_ok=True)
        filename = safe_name(image.task_id) + _MIME_EXTS.get(image.mime_type, ".bin")
        (images_dir / filename).write_bytes(data)
        written[image.task_id] = f"images/{filename}"
    if written:
        logger.info(f"Wrote {len(written)} image(s)")
    return written


def _write_summary_json(summary: SwarmSummary, out: Path, file_map: dict[str, str],
                        image_files: dict[str, str], brief_text: str) -> None:
    """summary.json: the run summary minus inline image data, plus file references."""
    data = summary.to_dict()
    data["generatedImages"] = [
        {k: v for k, v in img.items() if k != "base64Data"}
        | {"file": image_files.get(img["taskId"])}
        for img in data["generatedImages"]
    ]
    for d in data["deliverables"]:
        d["file"] = file_map.get(d["taskId"])
        if d.get("image"):
            d["image"].pop("base64Data", None)
    data["brief"] = brief_text
    data["generatedAt"] = datetime.now().isoformat(timespec="seconds")

    dest = out / "summary.json"
    dest.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    logger.info("Wrote summary.json")


def _write_readme(summary: SwarmSummary, out: Path, file_map: dict[str, str],
                  image_files: dict[str, str], brief_text: str) -> None:
    """Write a human-readable README.md summarizing the run."""
    budget = summary.original_budget
    used_pct = (summary.total_spent / budget * 100) if budget > 0 else 0.0

    lines = [
        f"# Swarm run: {brief_text[:80] or summary.run_id}",
        "",
        f"**Run ID**: `{summary.run_id}`  ",
        f"**Tier**: `{summary.tier}`  ",
        f"**Generated**: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}  ",
        f"**Spent**: {summary.total_spent:.4f} / {budget} MNEE ({used_pct:.1f}%)  ",
        f"**Refund**: {summary.refund_amount:.4f} MNEE  ",
        f"**Time elapsed**: {summary.execution_time:.1f}s  ",
    ]
    if summary.terminated_early:
        lines.append("**Note**: generation stopped early when the budget ran out.  ")
    lines += [
        "",
        "## Tasks",
        "",
        f"{summary.completed_tasks} accepted, {summary.rejected_tasks} rejected, "
        f"{summary.failed_tasks} failed, {summary.total_tasks} total.",
        "",
        "## Provider Payments",
        "",
        "| Provider | Task | Amount (MNEE) | Tx |",
        "|----------|------|---------------|----|",
    ]
    for p in summary.provider_payments:
        tag = " (simulated)" if p.simulated else ""
        lines.append(f"| {p.provider_name or p.recipient} | `{p.task_id}` "
                     f"| {p.amount:.4f} | `{p.tx_hash[:14]}…`{tag} |")

    lines += [
        "",
        "## Agent Costs",
        "",
        "| Agent | Amount (MNEE) | Reason |",
        "|-------|---------------|--------|",
    ]
    for a in summary.agent_payments:
        lines.append(f"| {a.agent} | {a.amount:.6f} | {a.reason} |")

    lines += [
        "",
        "## Files Generated",
        "",
        "- `final.md`: Assembled final document",
    ]
    for d in summary.deliverables:
        if d.task_id in file_map:
            lines.append(f"- `{file_map[d.task_id]}`: {d.task_description[:70]}")
    for path in image_files.values():
        lines.append(f"- `{path}`")
    lines += [
        "- `summary.json`: Full machine-readable summary",
        "- `README.md`: This file",
        "",
    ]

    dest = out / "README.md"
    dest.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Wrote README.md")
