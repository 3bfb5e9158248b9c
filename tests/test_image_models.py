"""Unit tests for channel and image containers."""

import numpy as np
import pytest

from hdr_inspector.image_models import (
    Channel,
    ChannelGroup,
    Image,
    channel_head,
    channel_tail,
    group_channels,
    next_image_id,
)


class TestChannelNames:
    """Test channel name splitting and grouping."""

    def test_tail_and_head(self):
        """Test prefix/suffix split on the last dot."""
        assert channel_tail("diffuse.R") == "R"
        assert channel_head("diffuse.R") == "diffuse"
        assert channel_tail("a.b.G") == "G"
        assert channel_head("a.b.G") == "a.b"
        assert channel_tail("B") == "B"
        assert channel_head("B") == ""

    def test_group_channels_keeps_order(self):
        """Test grouping by prefix in first-seen order."""
        groups = group_channels(["R", "G", "normal.X", "B", "normal.Y"])
        assert groups == [
            ChannelGroup("", ("R", "G", "B")),
            ChannelGroup("normal", ("normal.X", "normal.Y")),
        ]


class TestChannel:
    """Test channel sampling and immutability."""

    def test_data_is_read_only_copy(self):
        """Test the channel owns a read-only float32 copy."""
        source = np.ones((2, 3), dtype=np.float64)
        channel = Channel("R", source)
        source[0, 0] = 5.0
        assert channel.data.dtype == np.float32
        assert channel.data[0, 0] == 1.0
        with pytest.raises(ValueError):
            channel.data[0, 0] = 2.0

    def test_size_and_count(self):
        """Test size is (width, height)."""
        channel = Channel("R", np.zeros((2, 3)))
        assert channel.size == (3, 2)
        assert channel.count == 6

    def test_eval_by_coordinate_and_index(self):
        """Test sampling by (x, y) and by flat index."""
        channel = Channel("R", np.arange(6).reshape(2, 3))
        assert channel.eval((2, 1)) == 5.0
        assert channel.eval(4) == 4.0

    def test_eval_out_of_range_is_zero(self):
        """Test out-of-range reads return 0."""
        channel = Channel("R", np.ones((2, 2)))
        assert channel.eval((-1, 0)) == 0.0
        assert channel.eval((0, 2)) == 0.0
        assert channel.eval(4) == 0.0
        assert channel.eval(-1) == 0.0

    def test_rejects_non_2d(self):
        """Test channels must be 2D."""
        with pytest.raises(ValueError, match="2D"):
            Channel("R", np.zeros(4))

    def test_wrap_does_not_copy(self):
        """Test wrap adopts float32 data without copying."""
        data = np.zeros((2, 2), dtype=np.float32)
        channel = Channel.wrap("R", data)
        assert channel.data is data
        assert not data.flags.writeable


class TestImage:
    """Test image construction and channel-group queries."""

    def test_from_array(self, rgb_image):
        """Test building from a (Y, X, C) array."""
        assert rgb_image.size == (4, 3)
        assert rgb_image.count == 12
        assert rgb_image.channel_names == ["R", "G", "B"]
        assert rgb_image.sample("G", (1, 0)) == 3.0

    def test_unique_ids(self):
        """Test every image gets a fresh id."""
        a = Image.from_array(np.zeros((2, 2)), ("Y",))
        b = Image.from_array(np.zeros((2, 2)), ("Y",))
        assert a.id != b.id
        assert next_image_id() > b.id

    def test_explicit_id(self):
        """Test an explicit id is kept."""
        image = Image([Channel("Y", np.zeros((1, 1)))], image_id=42)
        assert image.id == 42

    def test_channels_in_group(self):
        """Test group lookup, de-duplication, and unknown groups."""
        image = Image.from_channels(
            {"R": np.zeros((2, 2)), "G": np.zeros((2, 2)), "depth.Z": np.zeros((2, 2))}
        )
        assert image.channels_in_group("") == ["R", "G"]
        assert image.channels_in_group("depth") == ["depth.Z"]
        assert image.channels_in_group("missing") == []

        dup = Image(
            [Channel("R", np.zeros((1, 1))), Channel("G", np.zeros((1, 1)))],
            groups=[ChannelGroup("rgb", ("R", "G", "R"))],
        )
        assert dup.channels_in_group("rgb") == ["R", "G"]

    def test_size_mismatch_raises(self):
        """Test channels of different sizes are rejected."""
        with pytest.raises(ValueError, match="size"):
            Image([Channel("R", np.zeros((2, 2))), Channel("G", np.zeros((3, 2)))])

    def test_empty_raises(self):
        """Test an image needs channels."""
        with pytest.raises(ValueError):
            Image([])

    def test_sample_unknown_channel_raises(self, rgb_image):
        """Test sampling a missing channel raises."""
        with pytest.raises(ValueError, match="no channel"):
            rgb_image.sample("A", (0, 0))
