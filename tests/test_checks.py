"""Tests for the Dependency Verifier and Conflict Detector."""
import pytest

from mpkg.checks import ConflictDetector, DependencyVerifier
from mpkg.descriptor import InstalledRecord, PackageDescriptor
from mpkg.errors import ConflictDetected, MissingDependency


def _install(index, name, paths=None):
    index.write_record(name, InstalledRecord(PackageDescriptor(name=name)))
    if paths is not None:
        index.write_manifest(name, paths)


class TestDependencyVerifier:

    def test_empty_always_passes(self, index):
        report = DependencyVerifier(index).verify("")
        assert report.passed
        assert report.satisfied == [] and report.missing == []

    def test_all_satisfied(self, index):
        _install(index, "bar")
        _install(index, "baz")
        report = DependencyVerifier(index).verify(" bar , baz ")
        assert report.satisfied == ["bar", "baz"]

    def test_missing_raises_with_both_lists(self, index):
        _install(index, "bar")
        with pytest.raises(MissingDependency) as exc:
            DependencyVerifier(index).verify("bar,qux,zot")
        assert exc.value.missing == ["qux", "zot"]
        assert exc.value.satisfied == ["bar"]
        assert "2 dependencies are missing" in str(exc.value)

    def test_manifest_alone_does_not_satisfy(self, index):
        index.write_manifest("ghost", ["/x"])
        report = DependencyVerifier(index).check("ghost")
        assert report.missing == ["ghost"]

    def test_unusable_name_counts_as_missing(self, index):
        _install(index, "bar")
        report = DependencyVerifier(index).check("bar, glibc>=2.0, foo bar")
        assert report.satisfied == ["bar"]
        assert report.missing == ["glibc>=2.0", "foo bar"]

    def test_report_lines(self, index):
        _install(index, "bar")
        lines = DependencyVerifier(index).check("bar,qux").lines()
        assert "Dependency 'bar' is installed." in lines
        assert "Error: dependency 'qux' is missing!" in lines


class TestConflictDetector:

    def test_no_conflict(self, index):
        _install(index, "a", ["/usr/bin/a"])
        ConflictDetector(index).check("b", ["/usr/bin/b"])

    def test_conflict_names_path_and_owner(self, index):
        _install(index, "a", ["/usr/bin/a", "/usr/share/common"])
        with pytest.raises(ConflictDetected) as exc:
            ConflictDetector(index).check("b", ["/usr/bin/b", "/usr/share/common"])
        assert exc.value.path == "/usr/share/common"
        assert exc.value.owner == "a"

    def test_own_manifest_ignored(self, index):
        _install(index, "a", ["/usr/bin/a"])
        ConflictDetector(index).check("a", ["/usr/bin/a"])

    def test_name_prefix_is_not_self(self, index):
        # "foo" and "foo-libs" are different packages.
        _install(index, "foo-libs", ["/usr/lib/libfoo.so"])
        with pytest.raises(ConflictDetected):
            ConflictDetector(index).check("foo", ["/usr/lib/libfoo.so"])

    def test_ghost_manifest_participates(self, index):
        index.write_manifest("ghost", ["/opt/ghost/bin"])
        with pytest.raises(ConflictDetected) as exc:
            ConflictDetector(index).check("b", ["/opt/ghost/bin"])
        assert exc.value.owner == "ghost"

    def test_defaults_to_stored_manifest(self, index):
        _install(index, "a", ["/etc/shared.conf"])
        index.write_manifest("b", ["/etc/shared.conf"])
        with pytest.raises(ConflictDetected):
            ConflictDetector(index).check("b")

    def test_no_manifest_no_conflict(self, index):
        _install(index, "a", ["/x"])
        ConflictDetector(index).check("b")
