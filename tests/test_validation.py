"""Tests for OSS input validation helpers."""

import pytest

from osslite.errors import InvalidArgument, InvalidBucketName, InvalidObjectName
from osslite.validation import (
    validate_append_position,
    validate_bucket_name,
    validate_max_keys,
    validate_object_key,
    validate_part_number,
)


class TestValidateBucketName:
    @pytest.mark.parametrize("name", ["abc", "my-bucket", "bucket-2024", "a" * 63])
    def test_valid(self, name):
        validate_bucket_name(name)

    @pytest.mark.parametrize(
        "name",
        ["ab", "a" * 64, "My-Bucket", "my_bucket", "-bucket", "bucket-", "my.bucket", ""],
    )
    def test_invalid(self, name):
        with pytest.raises(InvalidBucketName):
            validate_bucket_name(name)


class TestValidateObjectKey:
    def test_valid(self):
        validate_object_key("photos/2024/cat.jpg")
        validate_object_key("a" * 1023)

    def test_empty(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("")

    def test_too_long(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("a" * 1024)

    def test_multibyte_length_counts_bytes(self):
        with pytest.raises(InvalidObjectName):
            validate_object_key("é" * 512)

    @pytest.mark.parametrize("key", ["/leading", "\\leading"])
    def test_leading_slash(self, key):
        with pytest.raises(InvalidObjectName):
            validate_object_key(key)

    @pytest.mark.parametrize(
        "key", ["..", "../other/victim", "a/../../b", "a/./b", "a\\..\\b", "dir/.."]
    )
    def test_dot_segments(self, key):
        with pytest.raises(InvalidObjectName):
            validate_object_key(key)

    def test_dots_inside_names_allowed(self):
        validate_object_key("a..b/..c/file.")
        validate_object_key("...")


class TestValidateMaxKeys:
    def test_valid(self):
        assert validate_max_keys("1") == 1
        assert validate_max_keys("1000") == 1000

    @pytest.mark.parametrize("value", ["0", "1001", "-5", "abc", ""])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgument):
            validate_max_keys(value)


class TestValidateAppendPosition:
    def test_valid(self):
        assert validate_append_position("0") == 0
        assert validate_append_position("4096") == 4096

    @pytest.mark.parametrize("value", [None, "", "-1", "1.5", "x"])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgument):
            validate_append_position(value)


class TestValidatePartNumber:
    def test_valid(self):
        assert validate_part_number("1", 10000) == 1
        assert validate_part_number("10000", 10000) == 10000

    @pytest.mark.parametrize("value", [None, "0", "10001", "abc"])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgument):
            validate_part_number(value, 10000)

    def test_configured_limit(self):
        with pytest.raises(InvalidArgument):
            validate_part_number("11", 10)
