from pathlib import Path

from ..config import ARTIFACT_DIR
from .validation import validate_job_id


def artifact_root() -> Path:
    p = Path(ARTIFACT_DIR)
    p.mkdir(parents=True, exist_ok=True)
    return p


def job_dir(job_id: str, create: bool = False) -> Path:
    p = artifact_root() / validate_job_id(job_id)
    if create:
        p.mkdir(exist_ok=True)
    return p


def partial_name(chunk_index: int) -> str:
    return f"part_{chunk_index:05d}.zip"


def partial_path(job_id: str, name: str) -> Path:
    """Resolve a stored artifact name inside its job directory only"""
    base = job_dir(job_id)
    p = base / Path(name).name
    if p.parent != base:
        raise ValueError(f"artifact outside job directory: {name}")
    return p
