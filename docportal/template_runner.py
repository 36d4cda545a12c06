from __future__ import annotations

import base64
import binascii
import logging
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

BASE64_BEGIN_MARKER = "BEGIN_DOCX_BASE64"
BASE64_END_MARKER = "END_DOCX_BASE64"


@dataclass(frozen=True)
class TemplateRunResult:
    status: str
    message: str
    warnings: list[str] = field(default_factory=list)
    output_filename: str | None = None
    content: bytes | None = None
    processing_output: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "success"


def unique_output_filename(suffix: str) -> str:
    """Timestamped result filename; results are never overwritten."""
    return f"{time.time_ns()}{suffix}"


def parse_memory_output(stdout: str) -> tuple[str, str]:
    """Split script stdout into the base64 payload and the remaining log lines."""
    payload: list[str] = []
    output: list[str] = []
    in_payload = False
    for line in stdout.splitlines():
        if BASE64_BEGIN_MARKER in line:
            in_payload = True
            continue
        if BASE64_END_MARKER in line:
            in_payload = False
            continue
        if in_payload:
            payload.append(line.strip())
        elif line.strip():
            output.append(line)
    return "".join(payload), "\n".join(output)


def _missing_inputs(script_path: Path | None, template_path: Path | None) -> TemplateRunResult | None:
    if script_path is None or not script_path.is_file():
        logger.error("Processing script not found at %s", script_path)
        return TemplateRunResult(status="error", message="Processing script not found")
    if template_path is None or not template_path.is_file():
        logger.error("Template file not found at %s", template_path)
        return TemplateRunResult(status="error", message="Template file not found")
    return None


def _run(command: list[str], timeout_seconds: float) -> subprocess.CompletedProcess | TemplateRunResult:
    logger.info("Executing %s", " ".join(command))
    try:
        completed = subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired:
        logger.error("Template processing timed out after %s seconds", timeout_seconds)
        return TemplateRunResult(
            status="error",
            message=f"Template processing timed out after {timeout_seconds:g} seconds",
        )
    except OSError as exc:
        logger.error("Could not start template processing: %s", exc)
        return TemplateRunResult(status="error", message=f"Could not start processing script: {exc}")

    if completed.stderr:
        logger.warning("Template script stderr: %s", completed.stderr.strip())
    if completed.returncode != 0:
        return TemplateRunResult(
            status="error",
            message=f"Processing script failed with exit code {completed.returncode}",
            warnings=[line for line in (completed.stderr or "").splitlines() if line.strip()][-5:],
        )
    return completed


def run_template_filler(
    *,
    script_path: Path | None,
    template_path: Path | None,
    output_dir: Path,
    python_executable: str,
    timeout_seconds: float,
) -> TemplateRunResult:
    """Run the filler script in file mode and collect the produced form."""
    missing = _missing_inputs(script_path, template_path)
    if missing is not None:
        return missing

    output_dir.mkdir(parents=True, exist_ok=True)
    output_filename = unique_output_filename("-form.docx")
    output_path = output_dir / output_filename

    completed = _run(
        [python_executable, str(script_path), "--input", str(template_path), "--output", str(output_path)],
        timeout_seconds,
    )
    if isinstance(completed, TemplateRunResult):
        output_path.unlink(missing_ok=True)
        return completed

    if not output_path.is_file():
        logger.error("Output file was not created at %s", output_path)
        return TemplateRunResult(status="error", message="Processing failed - output file not created")

    content = output_path.read_bytes()
    output_path.unlink(missing_ok=True)
    return TemplateRunResult(
        status="success",
        message="Template processed successfully",
        output_filename=output_filename,
        content=content,
        processing_output=(completed.stdout or "").strip(),
    )


def run_template_in_memory(
    *,
    script_path: Path | None,
    template_path: Path | None,
    python_executable: str,
    timeout_seconds: float,
) -> TemplateRunResult:
    """Run the script in memory mode; the document comes back base64-encoded on stdout."""
    missing = _missing_inputs(script_path, template_path)
    if missing is not None:
        return missing

    completed = _run(
        [python_executable, str(script_path), "--template", str(template_path), "--memory"],
        timeout_seconds,
    )
    if isinstance(completed, TemplateRunResult):
        return completed

    encoded, processing_output = parse_memory_output(completed.stdout or "")
    if not encoded:
        logger.error("No DOCX data received from processing script")
        return TemplateRunResult(
            status="error",
            message="Processing failed - no document data received",
            processing_output=processing_output,
        )

    try:
        content = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return TemplateRunResult(
            status="error",
            message="Processing failed - document data is not valid base64",
            processing_output=processing_output,
        )

    logger.info("Received document data: %d bytes", len(content))
    return TemplateRunResult(
        status="success",
        message="Template processed successfully in memory",
        output_filename=unique_output_filename("-template_processed.docx"),
        content=content,
        processing_output=processing_output,
    )
