"""Tests for word-boundary buffering."""

from __future__ import annotations

from docchat.streaming.buffer import BufferState, WordBoundaryBuffer, last_boundary
from docchat.utils.text import identity


class TestLastBoundary:
    """Test last_boundary helper."""

    def test_finds_rightmost(self) -> None:
        assert last_boundary("hello world, how") == 12

    def test_no_boundary(self) -> None:
        assert last_boundary("hello") == -1

    def test_boundary_at_start(self) -> None:
        """Index 0 counts as a boundary."""
        assert last_boundary(" hello") == 0

    def test_markdown_markers(self) -> None:
        assert last_boundary("**bold") == 1
        assert last_boundary("# Title") == 1


class TestWordBoundaryBuffer:
    """Test WordBoundaryBuffer."""

    def test_holds_partial_word(self) -> None:
        """Should release text up to the last boundary and keep the rest."""
        buffer = WordBoundaryBuffer(identity)

        assert buffer.push("hello wor") == "hello "
        assert buffer.pending_tail == "wor"

        assert buffer.push("ld, how are you?") == "world, how are you?"
        assert buffer.pending_tail == ""
        assert buffer.flush() == ""

    def test_no_boundary_returns_empty(self) -> None:
        """Should emit nothing until a boundary arrives."""
        buffer = WordBoundaryBuffer(identity)

        assert buffer.push("Hel") == ""
        assert buffer.push("lo") == ""
        assert buffer.pending_tail == "Hello"

    def test_boundary_at_index_zero(self) -> None:
        """A fragment starting with a boundary releases that boundary."""
        buffer = WordBoundaryBuffer(identity)

        assert buffer.push(" foo") == " "
        assert buffer.pending_tail == "foo"

    def test_empty_fragment(self) -> None:
        buffer = WordBoundaryBuffer(identity)
        buffer.push("abc")

        assert buffer.push("") == ""
        assert buffer.pending_tail == "abc"

    def test_completeness(self) -> None:
        """Emitted text plus the final flush equals everything pushed."""
        fragments = ["The ", "qu", "ick brown", " fox", "", "-jumps", " over **the", "** dog"]
        buffer = WordBoundaryBuffer(identity)

        emitted = [buffer.push(fragment) for fragment in fragments]
        emitted.append(buffer.flush())

        assert "".join(emitted) == "".join(fragments)

    def test_transformer_applied_to_whole_words(self) -> None:
        """Should convert a word split across fragments."""
        buffer = WordBoundaryBuffer()

        assert buffer.push("the colo") == "the "
        assert buffer.push("r is ") == "colour is "
        assert buffer.push("gray") == ""
        assert buffer.flush() == "grey"

    def test_output_independent_of_chunking(self) -> None:
        """Splitting at an underscore gives the same text as one fragment."""
        whole = WordBoundaryBuffer()
        split = WordBoundaryBuffer()

        one = whole.push("snake_color is") + whole.flush()
        two = split.push("snake_") + split.push("color is") + split.flush()

        assert one == two == "snake_colour is"

    def test_flush_resets(self) -> None:
        buffer = WordBoundaryBuffer(identity)
        buffer.push("hello wor")
        buffer.flush()

        assert buffer.state == BufferState()
        assert buffer.flush() == ""

    def test_committed_text_tracks_raw_input(self) -> None:
        """committed_text plus pending_tail is the raw concatenation."""
        buffer = WordBoundaryBuffer()
        buffer.push("the color ")
        buffer.push("is gr")

        state = buffer.state
        assert state.committed_text == "the color is "
        assert state.pending_tail == "gr"

    def test_state_is_a_copy(self) -> None:
        buffer = WordBoundaryBuffer(identity)
        buffer.push("abc")

        state = buffer.state
        state.pending_tail = "changed"

        assert buffer.pending_tail == "abc"

    def test_discard(self) -> None:
        """Should drop the tail without transforming it."""
        buffer = WordBoundaryBuffer()
        buffer.push("the colo")

        assert buffer.discard() == "colo"
        assert buffer.pending_tail == ""
        assert buffer.flush() == ""

    def test_custom_boundaries(self) -> None:
        buffer = WordBoundaryBuffer(identity, boundaries=frozenset("|"))

        assert buffer.push("a b|c d") == "a b|"
        assert buffer.pending_tail == "c d"
