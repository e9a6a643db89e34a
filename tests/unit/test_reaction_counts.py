"""Folding Discord message reactions into counts."""

from citadel.discord.reactions import count_reactions


class TestCountReactions:
    def test_sums_per_emoji(self):
        message = {
            "reactions": [
                {"emoji": {"id": None, "name": "🔥"}, "count": 3},
                {"emoji": {"id": None, "name": "⚡"}, "count": 2},
            ]
        }
        counts = count_reactions(message)
        assert counts.total == 5
        assert counts.details == {"🔥": 3, "⚡": 2}

    def test_same_name_is_merged(self):
        message = {
            "reactions": [
                {"emoji": {"id": "1", "name": "sats"}, "count": 1},
                {"emoji": {"id": "2", "name": "sats"}, "count": 4},
            ]
        }
        assert count_reactions(message).details == {"sats": 5}

    def test_nameless_emoji(self):
        counts = count_reactions({"reactions": [{"emoji": {"id": "1", "name": None}, "count": 2}]})
        assert counts.details == {"unknown": 2}

    def test_no_reactions(self):
        assert count_reactions({"id": "m1"}).total == 0
        assert count_reactions({"reactions": None}).details == {}
