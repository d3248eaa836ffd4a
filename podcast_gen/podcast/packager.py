"""Packager for podcast assembly output files."""

import json
import os
import zipfile
from datetime import datetime

import tqdm
from loguru import logger

from podcast_gen.podcast.models import AssemblyResult


class OutputPackager:
    """Package the files of an assembly run into a zip archive.

    Only the files tracked in the ``AssemblyResult`` are packaged, stored under their
    path relative to the output directory so that ``assemble.sh`` runs unchanged after
    extraction. A ``manifest.json`` describing the mix is added at the archive root.

    Example:
        >>> packager = OutputPackager()
        >>> zip_path = packager.package(result)
        >>> print(f"Package created: {zip_path}")
    """

    def package(self, result: AssemblyResult, zip_name: str | None = None) -> str:
        """Package all output files of ``result``.

        Args:
            result: The assembly result whose files are packaged
            zip_name: Archive file name, defaults to ``podcast_<timestamp>.zip``

        Returns:
            str: Path to the created zip file

        Raises:
            OSError: If there are issues creating the zip file or accessing files
        """
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        zip_path = os.path.join(result.output_dir, zip_name or f"podcast_{timestamp}.zip")
        files = result.output_files

        logger.info("=" * 80)
        logger.info("Packaging Output Files")
        logger.info("=" * 80)
        logger.info(f"  Title: {result.title}")
        logger.info(f"  Output files: {len(files)}")
        logger.info(f"  Zip file: {zip_path}")

        with zipfile.ZipFile(zip_path, "w", zipfile.ZIP_DEFLATED) as zipf:
            added = self._add_tracked_files(zipf, files, result.output_dir)
            self._add_manifest(zipf, timestamp, result, added)

        file_size_mb = os.path.getsize(zip_path) / (1024 * 1024)
        logger.info("=" * 80)
        logger.info("Package Created Successfully!")
        logger.info(f"  Path: {zip_path}")
        logger.info(f"  Size: {file_size_mb:.2f} MB")
        logger.info("=" * 80)

        return zip_path

    def _add_tracked_files(self, zipf: zipfile.ZipFile, file_paths: list[str], base_dir: str) -> list[str]:
        """Add tracked files to the archive and return their archive names.

        Args:
            zipf: The ZipFile object to add files to
            file_paths: Paths of the files to add
            base_dir: Base directory for calculating archive names
        """
        added = []
        skipped_count = 0
        progress_bar = tqdm.tqdm(total=len(file_paths), unit="file", desc="Packaging", dynamic_ncols=True)
        for file_path in file_paths:
            progress_bar.update(1)
            if not os.path.exists(file_path):
                logger.warning(f"  File not found (skipping): {file_path}")
                skipped_count += 1
                continue
            try:
                arcname = os.path.relpath(file_path, base_dir)
            except ValueError:
                # Different drive than base_dir
                arcname = os.path.basename(file_path)
            if arcname.startswith(".."):
                arcname = os.path.basename(file_path)
            arcname = arcname.replace(os.sep, "/")
            zipf.write(file_path, arcname=arcname)
            logger.debug(f"  Added: {arcname}")
            added.append(arcname)
        progress_bar.close()

        logger.info(f"  Successfully added: {len(added)} files")
        if skipped_count > 0:
            logger.warning(f"  Skipped (not found): {skipped_count} files")
        return added

    def _add_manifest(self, zipf: zipfile.ZipFile, timestamp: str, result: AssemblyResult, files: list[str]) -> None:
        report = result.report
        manifest_content = {
            "created_at": timestamp,
            "title": result.title,
            "duration": round(result.duration, 3),
            "sample_rate": report.sample_rate,
            "channels": report.channels,
            "chapters": [
                {
                    "id": span.chapter_id,
                    "title": span.title,
                    "start": round(span.start, 3),
                    "duration": round(span.duration, 3),
                }
                for span in report.chapters
            ],
            "music_cues": [cue.model_dump() for cue in report.music_cues],
            "sound_effects": [event.model_dump() for event in report.sfx_events],
            "sound_effects_mixed": report.sfx_mixed,
            "subtitle_cues": result.cue_count,
            "skipped": report.skipped,
            "bytes_freed": result.bytes_freed,
            "files": files,
        }

        manifest_json = json.dumps(manifest_content, indent=2, ensure_ascii=False)
        zipf.writestr("manifest.json", manifest_json)
        logger.info("Added manifest.json")
