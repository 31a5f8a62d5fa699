"""
tests/test_cogs.py — Discord event capture and the role gateway
================================================================
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import discord
from conftest import run_async

from pulse.bot.cogs.membership import Membership, mod_action_type
from pulse.bot.cogs.messages import Messages
from pulse.bot.cogs.voice import Voice
from pulse.bot.roles import DiscordRoleGateway
from pulse.database.models import ActivityEventType


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _make_bot() -> MagicMock:
    bot = MagicMock()
    bot.user.id = 1
    bot.tracker.log_event.return_value = True
    bot.cfg.voice_tick_minutes = 1
    return bot


def _message(author_id=2, bot=False, guild_id=10, channel_id=20) -> MagicMock:
    msg = MagicMock()
    msg.author.id = author_id
    msg.author.bot = bot
    msg.guild.id = guild_id
    msg.channel.id = channel_id
    return msg


def _voice_member(member_id, self_mute=False, self_deaf=False, bot=False) -> MagicMock:
    member = MagicMock()
    member.id = member_id
    member.bot = bot
    member.voice.self_mute = self_mute
    member.voice.mute = False
    member.voice.self_deaf = self_deaf
    member.voice.deaf = False
    return member


class TestMessagesCog:
    def test_guild_message_is_logged(self):
        bot = _make_bot()
        run_async(Messages(bot).on_message(_message()))

        bot.tracker.log_event.assert_called_once_with(
            10, ActivityEventType.MESSAGE, user_id=2, channel_id=20, metadata={},
        )

    def test_dm_ignored(self):
        bot = _make_bot()
        msg = _message()
        msg.guild = None

        run_async(Messages(bot).on_message(msg))

        bot.tracker.log_event.assert_not_called()

    def test_own_messages_ignored(self):
        bot = _make_bot()
        run_async(Messages(bot).on_message(_message(author_id=1)))
        bot.tracker.log_event.assert_not_called()

    def test_other_bots_are_flagged(self):
        bot = _make_bot()
        run_async(Messages(bot).on_message(_message(bot=True)))
        assert bot.tracker.log_event.call_args.kwargs["metadata"] == {"bot": True}

    def test_tracker_error_does_not_escape(self):
        bot = _make_bot()
        bot.tracker.log_event.side_effect = ValueError("bad")
        run_async(Messages(bot).on_message(_message()))


class TestVoiceCog:
    def test_tick_logs_each_member_and_skips_afk(self):
        bot = _make_bot()
        afk = MagicMock(id=99, members=[_voice_member(7)])
        lounge = MagicMock(id=30, members=[_voice_member(5), _voice_member(6, self_deaf=True)])
        guild = MagicMock(id=10, afk_channel=afk, voice_channels=[lounge, afk], stage_channels=[])

        queued = Voice(bot).tick_guild(guild, minutes=1)

        assert queued == 2
        calls = bot.tracker.log_event.call_args_list
        assert [c.kwargs["user_id"] for c in calls] == [5, 6]
        assert calls[1].kwargs["metadata"] == {"minutes": 1, "self_mute": False, "self_deaf": True}
        assert all(c.kwargs["channel_id"] == 30 for c in calls)


class TestMembershipCog:
    def test_mod_action_type(self):
        assert mod_action_type(discord.AuditLogAction.ban, None) == "ban"
        assert mod_action_type(discord.AuditLogAction.kick, "spam") == "kick"
        assert mod_action_type(discord.AuditLogAction.kick, "Failed CAPTCHA") == "captcha_kick"
        assert mod_action_type(discord.AuditLogAction.channel_create, None) is None

    def test_join_and_leave(self):
        bot = _make_bot()
        cog = Membership(bot)
        member = MagicMock(id=5, bot=False)
        member.guild.id = 10

        run_async(cog.on_member_join(member))
        run_async(cog.on_member_remove(member))

        kinds = [c.args[1] for c in bot.tracker.log_event.call_args_list]
        assert kinds == [ActivityEventType.JOIN, ActivityEventType.LEAVE]

    def test_audit_log_kick(self):
        bot = _make_bot()
        entry = MagicMock(action=discord.AuditLogAction.kick, reason="captcha timeout", user_id=3)
        entry.guild.id = 10
        entry.target.id = 4

        run_async(Membership(bot).on_audit_log_entry_create(entry))

        bot.tracker.log_mod_action.assert_called_once_with(
            10, moderator_id=3, target_id=4, action_type="captcha_kick", reason="captcha timeout",
        )

    def test_untracked_audit_action_ignored(self):
        bot = _make_bot()
        entry = MagicMock(action=discord.AuditLogAction.role_update, reason=None, user_id=3)

        run_async(Membership(bot).on_audit_log_entry_create(entry))

        bot.tracker.log_mod_action.assert_not_called()


class TestDiscordRoleGateway:
    def _gateway(self, member):
        bot = MagicMock()
        guild = MagicMock()
        guild.get_member.return_value = member
        bot.get_guild.return_value = guild
        return DiscordRoleGateway(bot), guild

    def test_member_role_ids(self):
        member = MagicMock(roles=[MagicMock(id=1), MagicMock(id=2)])
        gateway, _ = self._gateway(member)

        assert run_async(gateway.member_role_ids(10, 5)) == {1, 2}

    def test_departed_member_is_none(self):
        gateway, guild = self._gateway(None)
        guild.fetch_member = AsyncMock(
            side_effect=discord.NotFound(MagicMock(status=404), "Unknown Member"),
        )

        assert run_async(gateway.member_role_ids(10, 5)) is None

    def test_add_roles_skips_deleted_roles(self):
        role = MagicMock(id=7)
        member = MagicMock()
        member.guild.get_role.side_effect = lambda rid: role if rid == 7 else None
        member.add_roles = AsyncMock()
        gateway, _ = self._gateway(member)

        run_async(gateway.add_roles(10, 5, [7, 8]))

        member.add_roles.assert_awaited_once()
        assert member.add_roles.call_args.args == (role,)
