import logging
from pathlib import Path
from typing import Dict, List
from vbudget.domain.models import Job, JobStatus


class OutputWriter:
    """Writes the artifacts of completed jobs to an output directory.

    Layout per source ``clip.mov``::

        <output_dir>/clip/clip_opt.mp4
        <output_dir>/clip/thumbnails/clip_thumb_01.jpg

    Sources sharing a stem (``a/clip.mp4`` and ``b/clip.mov``) would land in the
    same folder; the later one gets its job id appended (``clip_<job id>``).
    """

    def __init__(self, output_dir: Path, suffix: str = "_opt"):
        self.output_dir = Path(output_dir)
        self.suffix = suffix
        self.logger = logging.getLogger(__name__)
        self._claimed: Dict[str, Path] = {}

    def _base_name(self, job: Job) -> str:
        base_name = job.source_path.stem
        owner = self._claimed.setdefault(base_name, job.source_path)
        if owner != job.source_path:
            base_name = f"{base_name}_{job.id}"
            self.logger.warning(f"OUTPUT_NAME_COLLISION: {job.source_path} shares a stem with {owner}; using {base_name}")
            self._claimed[base_name] = job.source_path
        return base_name

    def write(self, job: Job) -> List[Path]:
        if job.status != JobStatus.COMPLETED or job.result is None:
            return []
        base_name = self._base_name(job)
        folder = self.output_dir / base_name
        thumb_folder = folder / "thumbnails"
        thumb_folder.mkdir(parents=True, exist_ok=True)

        video_path = folder / f"{base_name}{self.suffix}.mp4"
        video_path.write_bytes(job.result.encoded_bytes)
        written = [video_path]

        for i, thumbnail in enumerate(job.result.thumbnails, start=1):
            thumb_path = thumb_folder / f"{base_name}_thumb_{i:02d}.jpg"
            thumb_path.write_bytes(thumbnail.image_bytes)
            written.append(thumb_path)

        self.logger.info(f"OUTPUT_WRITTEN: {job.name} files={len(written)} dir={folder}")
        return written
