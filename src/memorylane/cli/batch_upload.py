import mimetypes
import os

import structlog
from dotenv import load_dotenv
from invoke import Context, task

from memorylane.handlers.error import MemoryLaneError
from memorylane.handlers.upload import process_upload
from memorylane.models.image import DEFAULT_UPLOADER
from memorylane.services.storage import SUPPORTED_EXTENSIONS

logger = structlog.get_logger()


def find_image_files(directory: str, recursive: bool = False) -> list[str]:
    """Collect supported image files under ``directory``, sorted by path."""
    image_files = []
    if recursive:
        for root, _, files in os.walk(directory):
            for name in files:
                if os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                    image_files.append(os.path.join(root, name))
    else:
        for name in os.listdir(directory):
            path = os.path.join(directory, name)
            if os.path.isfile(path) and os.path.splitext(name)[1].lower() in SUPPORTED_EXTENSIONS:
                image_files.append(path)
    return sorted(image_files)


@task
def batch_upload(
    c: Context,
    directory: str,
    uploader_name: str = DEFAULT_UPLOADER,
    env_file: str = ".env",
    recursive: bool = False,
    dry_run: bool = False,
):
    """
    Import images from a local directory into the gallery.

    Args:
        c (Context): Invoke context.
        directory (str): Path to the directory containing images.
        uploader_name (str): Name recorded for every imported image. Default is 'Anonymous'.
        env_file (str): Path to the environment file. Default is '.env'.
        recursive (bool): Search for images in subdirectories. Default is False.
        dry_run (bool): If True, lists files to be processed without importing. Default is False.
    """
    if os.path.exists(env_file):
        logger.info("loading_env_file", env_file=env_file)
        load_dotenv(dotenv_path=env_file)
    else:
        logger.warning("env_file_not_found", env_file=env_file)

    if not os.path.isdir(directory):
        logger.error("directory_not_found", directory=directory)
        return

    logger.info(
        "batch_upload_started",
        directory=directory,
        uploader_name=uploader_name,
        recursive=recursive,
        dry_run=dry_run,
    )

    image_files = find_image_files(directory, recursive=recursive)
    if not image_files:
        logger.warning("no_image_files_found", directory=directory)
        return

    logger.info("image_files_found", count=len(image_files))

    if dry_run:
        print("\n--- Dry Run Mode: Files to be processed ---")
        for file_path in image_files:
            print(f"- {file_path}")
        print("--- End of Dry Run ---")
        return

    successful_uploads = 0
    failed_uploads = 0

    for file_path in image_files:
        filename = os.path.basename(file_path)
        content_type, _ = mimetypes.guess_type(filename)
        try:
            with open(file_path, "rb") as f:
                result = process_upload(
                    f,
                    filename,
                    content_type=content_type,
                    declared_size=os.path.getsize(file_path),
                    uploader_name=uploader_name,
                )
        except (MemoryLaneError, OSError) as e:
            logger.error("batch_upload_file_failed", filename=filename, error=str(e))
            failed_uploads += 1
            continue

        logger.info("batch_upload_file_done", filename=filename, stored_as=result["filename"])
        successful_uploads += 1

    logger.info(
        "batch_upload_finished",
        successful=successful_uploads,
        failed=failed_uploads,
        total=len(image_files),
    )
    print(f"\nBatch upload complete. Successful: {successful_uploads}, Failed: {failed_uploads}")
