"""
Tests for package metadata: PKGINFO parsing, the Metadata Reader, and
installed record serialization.
"""
import tarfile

import pytest

from conftest import build_archive
from mpkg.descriptor import (
    MAX_FIELD_LENGTH,
    InstalledRecord,
    PackageDescriptor,
    format_record,
    named,
    parse_descriptor,
    parse_record,
    read_package_info,
    read_record,
    validate_name,
)
from mpkg.errors import InvalidPackageName, ParseFailure


class TestParseDescriptor:
    """key=value decoding."""

    def test_all_keys(self):
        d = parse_descriptor(
            "name=foo\nversion=1.0\narch=x86_64\ndescription=Foo tool\n"
            "depends=bar, baz\nsize=2048\n"
        )
        assert d == PackageDescriptor(
            name="foo", version="1.0", arch="x86_64",
            depends="bar, baz", description="Foo tool", size=2048,
        )

    def test_unknown_keys_ignored(self):
        d = parse_descriptor("name=foo\nlicense=MIT\nmaintainer=someone\n")
        assert d.name == "foo"
        assert d.version == ""

    def test_bad_size_defaults_to_zero(self):
        assert parse_descriptor("name=foo\nsize=lots\n").size == 0
        assert parse_descriptor("name=foo\nsize=\n").size == 0

    def test_value_split_on_first_equals(self):
        d = parse_descriptor("name=foo\ndescription=a=b=c\n")
        assert d.description == "a=b=c"

    def test_crlf_lines(self):
        d = parse_descriptor("name=foo\r\nversion=2.1\r\n")
        assert d.name == "foo"
        assert d.version == "2.1"

    def test_overlong_field_rejected(self):
        with pytest.raises(ParseFailure, match="description"):
            parse_descriptor("name=foo\ndescription=" + "x" * (MAX_FIELD_LENGTH + 1))

    def test_dependencies_trimmed(self):
        d = PackageDescriptor(name="foo", depends=" bar ,baz,, qux ")
        assert d.dependencies == ["bar", "baz", "qux"]

    def test_no_dependencies(self):
        assert PackageDescriptor(name="foo").dependencies == []


class TestReadPackageInfo:
    """Metadata Reader on archives."""

    def test_reads_pkginfo(self, tmp_path):
        archive = build_archive(
            tmp_path / "foo.tar.xz",
            {"usr/bin/foo": "#!/bin/sh\n"},
            pkginfo={"name": "foo", "version": "1.0", "depends": "bar"},
        )
        d = read_package_info(archive)
        assert d.name == "foo"
        assert d.version == "1.0"
        assert d.dependencies == ["bar"]

    def test_dot_slash_pkginfo(self, tmp_path):
        archive = build_archive(
            tmp_path / "foo.tar.xz", {}, pkginfo={"name": "foo"}, pkginfo_name="./PKGINFO",
        )
        assert read_package_info(archive).name == "foo"

    def test_missing_pkginfo_returns_none(self, tmp_path):
        archive = build_archive(tmp_path / "foo.tar.xz", {"usr/bin/foo": "x"})
        assert read_package_info(archive) is None

    def test_unreadable_archive_returns_none(self, tmp_path):
        bogus = tmp_path / "bogus.tar.xz"
        bogus.write_bytes(b"not an archive")
        assert read_package_info(bogus) is None
        assert read_package_info(tmp_path / "absent.tar.xz") is None

    def test_gzip_archive(self, tmp_path):
        src = tmp_path / "PKGINFO"
        src.write_text("name=gz\nversion=3\n")
        archive = tmp_path / "gz.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(src, arcname="PKGINFO")
        assert read_package_info(archive).version == "3"


class TestInstalledRecord:
    """Record round trip."""

    def test_round_trip(self, tmp_path):
        d = PackageDescriptor(
            name="foo", version="1.0", arch="aarch64",
            depends="bar,baz", description="Foo tool", size=4096,
        )
        record = InstalledRecord(descriptor=d, install_time=1700000000)
        path = tmp_path / "foo.installed"
        path.write_text(format_record(record))

        loaded = read_record(path)
        assert loaded.descriptor == d
        assert loaded.install_time == 1700000000
        assert loaded.installed is True

    def test_format_lines(self):
        record = InstalledRecord(PackageDescriptor(name="foo", version="1"), install_time=5)
        text = format_record(record)
        assert text.splitlines()[0] == "name=foo"
        assert "install_time=5" in text
        assert text.endswith("installed=1\n")

    def test_newline_in_value_rejected(self):
        record = InstalledRecord(PackageDescriptor(name="foo", description="two\nlines"))
        with pytest.raises(ParseFailure):
            format_record(record)

    def test_read_absent_record(self, tmp_path):
        assert read_record(tmp_path / "nope.installed") is None

    def test_parse_record_without_installed_flag(self):
        record = parse_record("name=foo\nversion=1\n")
        assert record.installed is True
        assert record.install_time == 0


class TestNames:

    @pytest.mark.parametrize("name", ["foo", "lib32-glibc", "gtk+3", "python3.12", "a_b"])
    def test_valid(self, name):
        assert validate_name(name) == name

    @pytest.mark.parametrize("name", ["", "../etc", "a/b", ".hidden", "foo\nbar", "x" * 256])
    def test_invalid(self, name):
        with pytest.raises(InvalidPackageName):
            validate_name(name)

    def test_named_fills_missing_name(self):
        assert named(None, "foo") == PackageDescriptor(name="foo")
        assert named(PackageDescriptor(name="", version="2"), "foo").name == "foo"
