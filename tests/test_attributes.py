from datetime import datetime, timezone

import paramiko
import pytest

from pysftpfs.attributes import VIEWS, AttributeRequest, FileKind, RemoteFileAttributes
from pysftpfs.errors import (
    AttributeTypeError,
    NoSuchFileError,
    UnsupportedAttributeError,
    UnsupportedViewError,
)


def test_from_sftp_attributes():
    attrs = paramiko.SFTPAttributes()
    attrs.st_size = 12
    attrs.st_mode = 0o100640
    attrs.st_uid = 7
    attrs.st_gid = 8
    attrs.st_mtime = 1_600_000_000
    attrs.st_atime = 1_600_000_100
    result = RemoteFileAttributes.from_sftp(attrs)
    assert result.kind is FileKind.REGULAR
    assert result.size == 12
    assert result.permissions == 0o640
    assert (result.owner, result.group) == (7, 8)
    assert result.last_modified_time == datetime.fromtimestamp(1_600_000_000, tz=timezone.utc)
    assert result.creation_time == result.last_modified_time
    assert result.file_key is None


def test_read_attributes(fs, server):
    server.add_file("/home/foo", b"hello")
    server.add_link("/home/link", "foo")
    attrs = fs.read_attributes("foo")
    assert attrs.is_regular_file
    assert attrs.size == 5
    assert fs.read_attributes("link").is_regular_file
    assert fs.read_attributes("link", follow_links=False).is_symbolic_link


def test_read_attributes_of_missing_file(fs):
    with pytest.raises(NoSuchFileError) as info:
        fs.read_attributes("missing")
    assert info.value.path == "missing"


def test_read_attribute_map_defaults_to_basic(fs, server):
    server.add_file("/home/foo", b"abc")
    result = fs.read_attribute_map("foo", "size,isDirectory")
    assert result == {"basic:size": 3, "basic:isDirectory": False}


def test_read_attribute_map_wildcard(fs, server):
    server.add_file("/home/foo", b"abc")
    result = fs.read_attribute_map("foo", "posix:*")
    assert set(result) == {f"posix:{key}" for key in VIEWS["posix"]}
    assert result["posix:permissions"] == 0o644
    assert result["posix:fileKey"] is None


def test_read_attribute_map_wildcard_with_duplicates():
    request = AttributeRequest.parse("owner:owner,*")
    assert request.keys == ("owner",)


def test_read_attribute_map_rejects_unknown_names(fs, server):
    server.add_file("/home/foo")
    with pytest.raises(UnsupportedViewError):
        fs.read_attribute_map("foo", "dos:hidden")
    with pytest.raises(UnsupportedAttributeError) as info:
        fs.read_attribute_map("foo", "basic:owner")
    assert info.value.name == "owner"


def test_set_permissions(fs, server):
    server.add_file("/home/foo")
    fs.set_attribute("foo", "posix:permissions", 0o600)
    assert fs.read_attributes("foo").permissions == 0o600
    assert server.nodes["/home/foo"].perm == 0o600


def test_set_owner_and_group(fs, server):
    server.add_file("/home/foo")
    fs.set_attribute("foo", "owner:owner", 42)
    fs.set_attribute("foo", "posix:group", "43")
    node = server.nodes["/home/foo"]
    assert (node.uid, node.gid) == (42, 43)


def test_set_last_modified_time(fs, server):
    server.add_file("/home/foo")
    atime = server.nodes["/home/foo"].atime
    when = datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    fs.set_attribute("foo", "lastModifiedTime", when)
    assert fs.read_attributes("foo").last_modified_time == when
    assert server.nodes["/home/foo"].atime == atime


def test_set_attribute_rejects_wrong_types(fs, server):
    server.add_file("/home/foo")
    with pytest.raises(AttributeTypeError):
        fs.set_attribute("foo", "basic:lastModifiedTime", 12345)
    with pytest.raises(AttributeTypeError):
        fs.set_attribute("foo", "posix:permissions", "rw-r--r--")
    with pytest.raises(AttributeTypeError):
        fs.set_attribute("foo", "posix:owner", "root")


def test_set_attribute_rejects_read_only_names(fs, server):
    server.add_file("/home/foo")
    with pytest.raises(UnsupportedAttributeError) as info:
        fs.set_attribute("foo", "basic:size", 1)
    assert info.value.name == "basic:size"
    with pytest.raises(UnsupportedViewError):
        fs.set_attribute("foo", "acl:acl", [])


def test_set_attribute_on_missing_file(fs):
    with pytest.raises(NoSuchFileError) as info:
        fs.set_permissions("missing", 0o600)
    assert info.value.path == "missing"
    with pytest.raises(NoSuchFileError):
        fs.set_owner("missing", 1)


def test_read_attribute_map_of_a_directory(fs, server):
    server.add_dir("/home/dir")
    result = fs.read_attribute_map("dir", "size,isDirectory")
    assert result == {"basic:size": 0, "basic:isDirectory": True}


def test_read_attribute_map_wildcard_lists_each_key_once(fs, server):
    server.add_file("/home/foo")
    result = fs.read_attribute_map("foo", "posix:lastModifiedTime,*")
    assert list(result) == [f"posix:{key}" for key in VIEWS["posix"]]
