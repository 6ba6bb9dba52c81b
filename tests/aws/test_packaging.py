import os
import tempfile
import unittest
import zipfile

from rws_lambda.exceptions import NotFound
from rws_lambda.packaging import Packager

from .fakes import write_function


class LambdaPackaging(unittest.TestCase):
    files = {
        "index.js": "exports.handler = async () => ({});\n",
        "lib/helpers/format.js": "module.exports = {};\n",
        "node_modules/left-pad/index.js": "module.exports = () => {};\n",
        ".git/HEAD": "ref: refs/heads/main\n",
        "__pycache__/cached.pyc": "",
        "util.pyc": "",
    }

    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.functions_dir = os.path.join(self.tmp_dir.name, "lambda-functions")
        self.work_dir = os.path.join(self.tmp_dir.name, "cache")
        write_function(self.functions_dir, "artillery", self.files)
        self.packager = Packager(self.functions_dir)
        self.source_dir, self.expected_artifact = self.packager.package_paths("artillery", self.work_dir)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def names(self, artifact):
        with zipfile.ZipFile(artifact) as archive:
            return sorted(archive.namelist())

    def test_light_bundle_skips_dependencies(self):
        artifact = self.packager.archive(self.source_dir, self.work_dir)
        self.assertEqual(artifact, self.expected_artifact)
        self.assertEqual(os.path.basename(artifact), "RWS-artillery.zip")
        self.assertEqual(self.names(artifact), ["index.js", "lib/helpers/format.js"])

    def test_full_bundle_includes_dependencies(self):
        artifact = self.packager.archive(self.source_dir, self.work_dir, full_bundle=True)
        self.assertEqual(
            self.names(artifact),
            ["index.js", "lib/helpers/format.js", "node_modules/left-pad/index.js"],
        )

    def test_nested_content_is_preserved(self):
        artifact = self.packager.archive(self.source_dir, self.work_dir)
        with zipfile.ZipFile(artifact) as archive:
            self.assertEqual(archive.read("lib/helpers/format.js"), b"module.exports = {};\n")

    def test_existing_artifact_is_overwritten(self):
        os.makedirs(self.work_dir)
        with open(self.expected_artifact, "w") as f:
            f.write("stale")
        artifact = self.packager.archive(self.source_dir, self.work_dir)
        self.assertTrue(zipfile.is_zipfile(artifact))
        self.assertIn("index.js", self.names(artifact))

    def test_missing_source_directory(self):
        with self.assertRaises(NotFound):
            self.packager.archive(os.path.join(self.functions_dir, "missing"), self.work_dir)

    def test_dependency_archive(self):
        artifact = self.packager.archive_dependencies(self.source_dir, self.work_dir)
        self.assertEqual(os.path.basename(artifact), "RWS-artillery-modules.zip")
        self.assertEqual(self.names(artifact), ["node_modules/left-pad/index.js"])

    def test_dependency_archive_without_dependencies(self):
        write_function(self.functions_dir, "plain")
        with self.assertRaises(NotFound):
            self.packager.archive_dependencies(os.path.join(self.functions_dir, "plain"), self.work_dir)

    def test_nested_dependency_named_directories_are_kept(self):
        write_function(
            self.functions_dir,
            "nested",
            {
                "index.js": "exports.handler = async () => ({});\n",
                "lib/python/helper.py": "VALUE = 1\n",
                "lib/node_modules/a.js": "module.exports = 1;\n",
                "node_modules/left-pad/index.js": "module.exports = () => {};\n",
                "lib/__pycache__/helper.pyc": "",
            },
        )
        source_dir = os.path.join(self.functions_dir, "nested")
        artifact = self.packager.archive(source_dir, self.work_dir)
        self.assertEqual(
            self.names(artifact),
            ["index.js", "lib/node_modules/a.js", "lib/python/helper.py"],
        )

        modules = self.packager.archive_dependencies(source_dir, self.work_dir)
        self.assertEqual(self.names(modules), ["node_modules/left-pad/index.js"])

    def test_nested_dependency_named_directories_without_top_level_dependencies(self):
        write_function(
            self.functions_dir,
            "library",
            {
                "index.js": "exports.handler = async () => ({});\n",
                "lib/python/helper.py": "VALUE = 1\n",
            },
        )
        source_dir = os.path.join(self.functions_dir, "library")
        self.assertEqual(
            self.names(self.packager.archive(source_dir, self.work_dir)),
            ["index.js", "lib/python/helper.py"],
        )
        with self.assertRaises(NotFound):
            self.packager.archive_dependencies(source_dir, self.work_dir)
