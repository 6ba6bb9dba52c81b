"""
Packaging of function directories into Lambda deployment archives.

A function directory is zipped with its relative layout preserved:

    lambda-functions/artillery/
      - index.js
      - lib/helpers.js
      - node_modules/...      (only in full bundles)

Regular functions resolve shared dependencies from the EFS modules volume,
so their archives skip dependency directories. The EFS loader has to run
before that volume exists and is therefore always packaged as a full bundle.
"""

import fnmatch
import os
import zipfile
from typing import Tuple

from rws_lambda.exceptions import NotFound
from rws_lambda.function import function_name
from rws_lambda.utils import LoggingBase

DEPENDENCY_DIRS = {"node_modules", ".python_packages", "python"}
IGNORED_DIRS = {".git", "__pycache__", ".pytest_cache"}
IGNORED_FILES = ["*.pyc", ".DS_Store"]


class Packager(LoggingBase):
    def __init__(self, functions_dir: str):
        super().__init__()
        self.functions_dir = functions_dir

    @staticmethod
    def typename() -> str:
        return "Lambda.Packager"

    def package_paths(self, name: str, work_dir: str) -> Tuple[str, str]:
        """Return the source directory of a named function and the path of its archive."""
        source_dir = os.path.join(self.functions_dir, name)
        artifact = os.path.join(work_dir, f"{function_name(name)}.zip")
        return source_dir, artifact

    @staticmethod
    def _skip_file(filename: str) -> bool:
        return any(fnmatch.fnmatch(filename, pattern) for pattern in IGNORED_FILES)

    def archive(self, source_dir: str, work_dir: str, full_bundle: bool = False) -> str:
        """
        Zip `source_dir` into `<work_dir>/RWS-<dirname>.zip`.

        Args:
            source_dir: function directory to package
            work_dir: directory receiving the archive, created when missing
            full_bundle: include dependency directories in the archive

        Returns:
            str: path to the archive; a previous archive is overwritten

        Raises:
            NotFound: when `source_dir` is not a directory
        """
        source_dir = os.path.abspath(source_dir)
        if not os.path.isdir(source_dir):
            raise NotFound(f"Function directory {source_dir} does not exist.")

        os.makedirs(work_dir, exist_ok=True)
        name = os.path.basename(os.path.normpath(source_dir))
        artifact = os.path.join(work_dir, f"{function_name(name)}.zip")
        if os.path.exists(artifact):
            os.remove(artifact)

        excluded = set(IGNORED_DIRS)
        if not full_bundle:
            excluded |= DEPENDENCY_DIRS

        self.logging.info(
            "Packaging {} ({} bundle)".format(source_dir, "full" if full_bundle else "light")
        )
        files = 0
        with zipfile.ZipFile(artifact, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for root, dirs, filenames in os.walk(source_dir):
                # prune in place so os.walk does not descend into excluded trees;
                # dependency directories only count at the function root
                skipped = excluded if root == source_dir else IGNORED_DIRS
                dirs[:] = sorted(d for d in dirs if d not in skipped)
                for filename in sorted(filenames):
                    if self._skip_file(filename):
                        continue
                    path = os.path.join(root, filename)
                    if os.path.abspath(path) == os.path.abspath(artifact):
                        continue
                    archive.write(path, os.path.relpath(path, source_dir))
                    files += 1

        self._report(artifact, files)
        return artifact

    def archive_dependencies(self, source_dir: str, work_dir: str) -> str:
        """
        Zip only the dependency directories of `source_dir`.

        The result is the complement of a light bundle: it is unpacked onto
        the shared EFS volume by the loader function.

        Raises:
            NotFound: when the directory has no dependency directories
        """
        source_dir = os.path.abspath(source_dir)
        present = []
        if os.path.isdir(source_dir):
            present = sorted(
                d for d in DEPENDENCY_DIRS if os.path.isdir(os.path.join(source_dir, d))
            )
        if not present:
            raise NotFound(f"No dependency directories found in {source_dir}.")

        os.makedirs(work_dir, exist_ok=True)
        name = os.path.basename(os.path.normpath(source_dir))
        artifact = os.path.join(work_dir, f"{function_name(name)}-modules.zip")
        if os.path.exists(artifact):
            os.remove(artifact)

        self.logging.info("Packaging modules {} of {}".format(", ".join(present), source_dir))
        files = 0
        with zipfile.ZipFile(artifact, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for dependency_dir in present:
                for root, dirs, filenames in os.walk(os.path.join(source_dir, dependency_dir)):
                    dirs[:] = sorted(d for d in dirs if d not in IGNORED_DIRS)
                    for filename in sorted(filenames):
                        if self._skip_file(filename):
                            continue
                        path = os.path.join(root, filename)
                        archive.write(path, os.path.relpath(path, source_dir))
                        files += 1

        self._report(artifact, files)
        return artifact

    def _report(self, artifact: str, files: int):
        mbytes = os.path.getsize(artifact) / 1024.0 / 1024.0
        self.logging.info("Created {} archive with {} files".format(artifact, files))
        self.logging.info("Zip archive size {:2f} MB".format(mbytes))
