import tempfile
import unittest
from pathlib import Path

from packdock.modnames import (
    extract_mod_name_from_filename,
    is_probably_installed,
    normalize_mod_name,
    scan_installed_mod_names,
)


class TestExtractModName(unittest.TestCase):
    def test_common_release_filenames(self) -> None:
        cases = {
            "fabric-api-0.91.0+1.21.1.jar": "fabric-api",
            "jei-12.3.0.0.jar": "jei",
            "modmenu-8.0.0+1.21.1.jar": "modmenu",
            "sodium-fabric-mc1.21.1-0.5.8.jar": "sodium",
            "iris-mc1.21.1-1.6.4.jar": "iris",
            "lithium-fabric-mc1.21.1-0.12.2.jar": "lithium",
            "phosphor-fabric-mc1.21.1-0.9.0.jar": "phosphor",
        }
        for filename, expected in cases.items():
            with self.subTest(filename=filename):
                self.assertEqual(extract_mod_name_from_filename(filename), expected)

    def test_underscores_and_trailing_loader(self) -> None:
        self.assertEqual(extract_mod_name_from_filename("mod_name_v1.2.3_mc1.21.1.jar"), "mod-name")
        self.assertEqual(extract_mod_name_from_filename("some-mod-1.0.0-fabric.jar"), "some-mod")
        self.assertEqual(extract_mod_name_from_filename("another_mod_2.0.0_neoforge.jar"), "another-mod")


class TestNormalizeModName(unittest.TestCase):
    def test_strips_separators_and_case(self) -> None:
        self.assertEqual(normalize_mod_name("Fabric API"), "fabricapi")
        self.assertEqual(normalize_mod_name("iris_mc1.21.1"), "irismc1.21.1")
        self.assertEqual(normalize_mod_name("test--mod"), "testmod")
        self.assertEqual(normalize_mod_name("  spaced  mod  "), "spacedmod")


class TestDuplicateDetection(unittest.TestCase):
    def test_scan_only_reads_jars(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            mods = Path(td)
            (mods / "fabric-api-0.91.0+1.21.1.jar").write_bytes(b"x")
            (mods / "sodium-fabric-mc1.21.1-0.5.8.jar").write_bytes(b"x")
            (mods / "notes.txt").write_text("not a mod", encoding="utf-8")

            names = scan_installed_mod_names(mods)

        self.assertEqual(names, {"fabricapi", "sodium"})

    def test_scan_missing_directory_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(scan_installed_mod_names(Path(td) / "missing"), set())

    def test_exact_and_partial_matches(self) -> None:
        existing = {"fabricapi", "sodium"}
        self.assertTrue(is_probably_installed("Fabric API", existing))
        self.assertTrue(is_probably_installed("sodium-extra", existing))
        self.assertFalse(is_probably_installed("lithium", existing))

    def test_short_names_match_exactly_only(self) -> None:
        self.assertFalse(is_probably_installed("ae", {"aether"}))
        self.assertTrue(is_probably_installed("ae", {"ae"}))
        self.assertFalse(is_probably_installed("", {"anything"}))


if __name__ == "__main__":
    unittest.main()
