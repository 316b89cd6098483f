"""
Writer — serialize the run receipt and per-target logs.

Filesystem layout per report directory:
    <report_dir>/build_receipt.json
    <report_dir>/logs/<target>.stdout
    <report_dir>/logs/<target>.stderr
"""
import json
from pathlib import Path

from native_bridge.errors import ReportFailed
from native_bridge.io.schema import RunReceipt


def write_receipt(receipt: RunReceipt, report_dir: Path) -> Path:
    """
    Write build_receipt.json into *report_dir*, replacing any previous one.

    Creates *report_dir* if it does not exist.
    Returns the receipt path.

    Raises
    ------
    ReportFailed
        The directory or the file could not be written.
    """
    receipt_path = report_dir / "build_receipt.json"
    try:
        report_dir.mkdir(parents=True, exist_ok=True)
        receipt_path.write_text(
            json.dumps(
                receipt.model_dump(mode="json"),
                indent=2,
                sort_keys=True,
            )
            + "\n"
        )
    except OSError as e:
        raise ReportFailed(
            f"Could not write receipt to '{receipt_path}'.",
            hint="Check NATIVE_BRIDGE_REPORT_DIR points at a writable directory.",
            context={"path": str(receipt_path), "error": str(e)},
        ) from e
    return receipt_path


def write_logs(report_dir: Path, name: str, stdout: str, stderr: str) -> None:
    """Write captured child output.  Empty streams produce no file."""
    logs_dir = report_dir / "logs"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        if stdout:
            (logs_dir / f"{name}.stdout").write_text(stdout)
        if stderr:
            (logs_dir / f"{name}.stderr").write_text(stderr)
    except OSError as e:
        raise ReportFailed(
            f"Could not write logs for '{name}' under '{logs_dir}'.",
            hint="Check NATIVE_BRIDGE_REPORT_DIR points at a writable directory.",
            context={"target": name, "error": str(e)},
        ) from e
