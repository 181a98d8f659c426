import discord
from discord import app_commands
from discord.ext import commands
import logging
import asyncio
from typing import Dict, Optional, Sequence, Set
import os

from .config_manager import ConfigManager
from .data_manager import DataManager
from .leaderboard import Leaderboard
from .models import AnswerResult, LeaderboardEntry, QuizLevel, SessionSnapshot, SessionStatus
from .question_source import HttpQuestionSource
from .quiz_controller import QuizController
from .quiz_engine import AsyncioClock
from .scoring import get_achievement
from .session_controller import SessionController

logger = logging.getLogger(__name__)

COLOR_OK = 0x00ff00
COLOR_WARN = 0xff6600
COLOR_ERROR = 0xff0000
COLOR_INFO = 0x6699ff
COLOR_BRAND = 0x5e17eb

LEVEL_CHOICES = [app_commands.Choice(name=level.value.capitalize(), value=level.value) for level in QuizLevel]


def get_performance_message(score: float) -> str:
    if score >= 80:
        return "Outstanding! You've mastered this level!"
    if score >= 60:
        return "Great job! You're making excellent progress!"
    if score >= 40:
        return "Good effort! Keep practicing to improve!"
    return "Keep practicing! You'll get better with time."


def should_refresh_timer(remaining_time: int) -> bool:
    """Edit the question message every 5 seconds, and every second near the end."""
    return remaining_time % 5 == 0 or remaining_time <= 5


def build_question_embed(snapshot: SessionSnapshot) -> discord.Embed:
    question = snapshot.current_question
    remaining = snapshot.time_remaining
    if remaining > 10:
        color, timer_emoji = COLOR_OK, "⏱️"
    elif remaining > 5:
        color, timer_emoji = COLOR_WARN, "⚠️"
    else:
        color, timer_emoji = COLOR_ERROR, "🚨"

    embed = discord.Embed(
        title=f"🎯 Question {snapshot.current_index + 1}/{snapshot.total_questions}",
        description=question.prompt if question else "",
        color=color
    )
    if question and question.context:
        embed.add_field(name="📖 Context", value=question.context, inline=False)
    for label, text in snapshot.current_options:
        embed.add_field(name=label, value=text, inline=True)
    embed.add_field(
        name=f"{timer_emoji} Time Remaining",
        value=f"{remaining} second{'s' if remaining != 1 else ''}",
        inline=False
    )
    embed.add_field(
        name="❤️ Lives",
        value="❤️" * snapshot.lives if snapshot.lives else "0",
        inline=True
    )
    embed.add_field(name="🏆 Score", value=f"{snapshot.score:g}", inline=True)
    embed.add_field(name="🔥 Streak", value=f"{snapshot.streak} (x{snapshot.multiplier:.1f})", inline=True)
    embed.set_footer(text=f"{snapshot.language} · {snapshot.level.value} · ⚡ {snapshot.power_ups} power-ups (/boost)")
    return embed


def build_answer_embed(result: AnswerResult) -> discord.Embed:
    question = result.question
    if result.is_correct:
        title, color = "✅ Correct!", COLOR_OK
    elif result.timed_out:
        title, color = "⏰ Time's up!", COLOR_ERROR
    else:
        title, color = "❌ Not quite", COLOR_ERROR

    correct_text = question.option_text(question.correct_answer) or ""
    embed = discord.Embed(title=title, description=question.prompt, color=color)
    embed.add_field(
        name="Correct Answer",
        value=f"**{question.correct_answer}. {correct_text}**",
        inline=False
    )
    if question.explanation:
        embed.add_field(name="💡 Explanation", value=question.explanation, inline=False)
    for achievement_id in result.unlocked:
        achievement = get_achievement(achievement_id)
        if achievement:
            embed.add_field(
                name=f"🏅 Achievement unlocked: {achievement.name}",
                value=achievement.description,
                inline=False
            )
    embed.set_footer(text=f"Score {result.state.score:g} · Lives {result.state.lives} · Streak {result.state.streak}")
    return embed


def build_leaderboard_embed(entries: Sequence[LeaderboardEntry]) -> discord.Embed:
    embed = discord.Embed(title="🏆 Leaderboard", color=COLOR_BRAND)
    if not entries:
        embed.description = "No finished quizzes yet. Use `/quiz_start` to play!"
        return embed
    embed.description = "\n".join(
        f"**{index}.** {entry.name} - {round(entry.score)}"
        for index, entry in enumerate(entries, start=1)
    )
    return embed


def build_summary_embed(snapshot: SessionSnapshot, entries: Sequence[LeaderboardEntry], rank: int) -> discord.Embed:
    embed = discord.Embed(
        title="🎉 Quiz Complete!",
        description=f"**{round(snapshot.score)}** points earned",
        color=COLOR_BRAND
    )
    embed.add_field(name="Language", value=snapshot.language, inline=True)
    embed.add_field(name="Level", value=snapshot.level.value.capitalize(), inline=True)
    answered = sum(1 for answer in snapshot.answers if answer is not None)
    embed.add_field(name="Answered", value=f"{answered}/{snapshot.total_questions}", inline=True)
    embed.add_field(name="Performance", value=get_performance_message(snapshot.score), inline=False)

    achievements = [get_achievement(a) for a in sorted(snapshot.achievements)]
    achievements = [a for a in achievements if a is not None]
    if achievements:
        embed.add_field(
            name="Achievements Unlocked",
            value="\n".join(f"🏅 **{a.name}** - {a.description}" for a in achievements),
            inline=False
        )

    if entries:
        board = "\n".join(
            f"{'➡️ ' if index == rank else ''}{index}. {entry.name} - {round(entry.score)}"
            for index, entry in enumerate(entries, start=1)
        )
        embed.add_field(name="Leaderboard", value=board, inline=False)

    embed.set_footer(text="Use /quiz_start to try another quiz")
    return embed


class AnswerView(discord.ui.View):
    """One button per option, in the session's shuffled order."""

    def __init__(self, bot: "QuizBot", channel_id: int, snapshot: SessionSnapshot, timeout: float = None):
        super().__init__(timeout=timeout)
        self.bot = bot
        self.channel_id = channel_id
        self.question_index = snapshot.current_index
        for label, text in snapshot.current_options:
            button = discord.ui.Button(
                label=f"{label}. {text}"[:80],
                style=discord.ButtonStyle.primary,
                custom_id=f"answer:{channel_id}:{self.question_index}:{label}"
            )
            button.callback = self._make_callback(label)
            self.add_item(button)

    def _make_callback(self, label: str):
        async def callback(interaction: discord.Interaction):
            await self.bot.handle_answer(interaction, label, self.question_index)
        return callback


class QuizBot(commands.Bot):
    """Discord bot for the language quiz game"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True  # Required for slash commands

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.config_manager: Optional[ConfigManager] = None
        self.question_source = None
        self.quiz_controller: Optional[QuizController] = None

        self._channels: Dict[int, discord.abc.Messageable] = {}
        self._question_messages: Dict[int, discord.Message] = {}
        self._tasks: Set[asyncio.Task] = set()

    async def setup_hook(self):
        """Called when the bot is starting up"""
        logger.info("Setting up bot components...")

        self.config_manager = ConfigManager()
        if self.app_config:
            rejected = self.config_manager.apply_config(self.app_config)
            for error in rejected:
                logger.warning(f"Ignored configuration value: {error}")

        self.question_source = self.create_question_source()
        self.quiz_controller = QuizController(
            self.question_source,
            self.config_manager,
            AsyncioClock(),
            Leaderboard(self.config_manager.get_leaderboard_size())
        )
        self.quiz_controller.session_hook = self.attach_session

        await self.setup_commands()
        logger.info("Bot setup completed successfully")

    def create_question_source(self):
        if self.config_manager.get_question_source() == "file":
            data_manager = DataManager(self.config_manager.get_quiz_directory())
            data_manager.load_quiz_files()
            summary = data_manager.get_loading_summary()
            for error in summary['errors']:
                logger.warning(f"Question bank issue: {error}")
            banks = ", ".join(f"{name} ({count})" for name, count in summary['question_counts'].items())
            logger.info(f"Loaded {summary['total_banks']} question banks from {summary['quiz_directory']}: {banks or 'none'}")
            return data_manager
        return HttpQuestionSource(self.config_manager.get_api_endpoint())

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz_start", description="Start a language quiz")
        @app_commands.describe(language="Language to practice, e.g. Marathi", level="Difficulty level")
        @app_commands.choices(level=LEVEL_CHOICES)
        async def quiz_start_command(
            interaction: discord.Interaction,
            language: Optional[str] = None,
            level: Optional[app_commands.Choice[str]] = None
        ):
            await self.handle_quiz_start(interaction, language, level.value if level else None)

        @self.tree.command(name="boost", description="Use a power-up for 10 extra seconds")
        async def boost_command(interaction: discord.Interaction):
            await self.handle_boost(interaction)

        @self.tree.command(name="quiz_status", description="Show the current quiz status")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="quiz_stop", description="End the current quiz and record the score")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="leaderboard", description="Show the top scores")
        async def leaderboard_command(interaction: discord.Interaction):
            await self.handle_leaderboard(interaction)

        @self.tree.command(name="set_timer", description="Set seconds per question (5-300)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_setting(interaction, self.config_manager.set_timer_duration(seconds))

        @self.tree.command(name="set_language", description="Set the default quiz language")
        async def set_language_command(interaction: discord.Interaction, language: str):
            await self.handle_setting(interaction, self.config_manager.set_language(language))

        @self.tree.command(name="set_level", description="Set the default quiz level")
        @app_commands.choices(level=LEVEL_CHOICES)
        async def set_level_command(interaction: discord.Interaction, level: app_commands.Choice[str]):
            await self.handle_setting(interaction, self.config_manager.set_level(level.value))

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            self.quiz_controller.stop_all()
        for task in list(self._tasks):
            task.cancel()
        if isinstance(self.question_source, HttpQuestionSource):
            await self.question_source.aclose()
        await super().close()

    # Session listeners

    def attach_session(self, channel_id: int, session: SessionController) -> None:
        """Wire a new session's events to this channel's messages."""
        session.on_question = lambda snapshot: self._spawn(self.post_question(channel_id, snapshot))
        session.on_tick = lambda snapshot: self._on_tick(channel_id, snapshot)
        session.on_answer = lambda result, snapshot: self._spawn(self.post_answer(channel_id, result))
        session.on_end = lambda snapshot: self._spawn(self.post_summary(channel_id, snapshot, session.last_rank))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background Discord update failed: {error}", exc_info=error)

    def release_channel(self, channel_id: int) -> None:
        """Forget a channel whose quiz has finished."""
        session = self.quiz_controller.get_session(channel_id)
        if session is not None and session.status != SessionStatus.ENDED:
            # A new quiz was started before the summary went out
            return
        self._channels.pop(channel_id, None)
        self._question_messages.pop(channel_id, None)
        self.quiz_controller.cleanup_finished_sessions()

    def _on_tick(self, channel_id: int, snapshot: SessionSnapshot) -> None:
        if should_refresh_timer(snapshot.time_remaining):
            self._spawn(self.refresh_question(channel_id, snapshot))

    async def post_question(self, channel_id: int, snapshot: SessionSnapshot) -> None:
        channel = self._channels.get(channel_id)
        if channel is None:
            logger.warning(f"No channel registered for session {channel_id}")
            return
        try:
            message = await channel.send(
                embed=build_question_embed(snapshot),
                view=AnswerView(self, channel_id, snapshot)
            )
            self._question_messages[channel_id] = message
        except discord.HTTPException as e:
            logger.error(f"Failed to post question for channel {channel_id}: {e}")

    async def refresh_question(self, channel_id: int, snapshot: SessionSnapshot) -> None:
        message = self._question_messages.get(channel_id)
        if message is None:
            return
        try:
            await message.edit(embed=build_question_embed(snapshot))
        except discord.HTTPException as e:
            logger.debug(f"Failed to update timer for channel {channel_id}: {e}")

    async def post_answer(self, channel_id: int, result: AnswerResult) -> None:
        message = self._question_messages.pop(channel_id, None)
        try:
            if message is not None:
                await message.edit(embed=build_answer_embed(result), view=None)
            else:
                channel = self._channels.get(channel_id)
                if channel is not None:
                    await channel.send(embed=build_answer_embed(result))
        except discord.HTTPException as e:
            logger.error(f"Failed to show answer for channel {channel_id}: {e}")

    async def post_summary(self, channel_id: int, snapshot: SessionSnapshot, rank: int) -> None:
        channel = self._channels.get(channel_id)
        try:
            if channel is not None:
                await channel.send(embed=build_summary_embed(
                    snapshot, self.quiz_controller.leaderboard.entries(), rank
                ))
        except discord.HTTPException as e:
            logger.error(f"Failed to send quiz summary for channel {channel_id}: {e}")
        finally:
            self.release_channel(channel_id)

    # Command handlers

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        help_embed = discord.Embed(
            title="🎯 Language Quiz Commands",
            description="Answer before the timer runs out. Three wrong answers and you're out!",
            color=COLOR_OK
        )
        help_embed.add_field(
            name="🎮 Playing",
            value=(
                "`/quiz_start [language] [level]` - Start a quiz\n"
                "`/boost` - Spend a power-up for 10 extra seconds\n"
                "`/quiz_status` - Show score, lives and time left\n"
                "`/quiz_stop` - End the quiz and record your score\n"
                "`/leaderboard` - Show the top scores"
            ),
            inline=False
        )
        help_embed.add_field(
            name="📋 Settings",
            value=(
                "`/set_language <language>` - Default language\n"
                "`/set_level <level>` - Default level\n"
                "`/set_timer <seconds>` - Seconds per question (5-300)"
            ),
            inline=False
        )
        help_embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        config_issues = self.config_manager.get_user_friendly_validation_errors()
        if config_issues:
            help_embed.add_field(name="⚠️ Configuration Issues", value="\n".join(config_issues), inline=False)
        help_embed.set_footer(text="Correct answers build a streak multiplier up to x2.0")
        try:
            await interaction.response.send_message(embed=help_embed)
        except discord.HTTPException as e:
            logger.error(f"Error in help command: {e}")

    async def handle_quiz_start(self, interaction: discord.Interaction, language: Optional[str], level: Optional[str]):
        """Handle /quiz_start command"""
        channel_id = interaction.channel_id
        self._channels[channel_id] = interaction.channel

        try:
            await interaction.response.defer(thinking=True)
        except discord.HTTPException as e:
            logger.warning(f"Could not defer quiz_start for channel {channel_id}: {e}")

        result = await self.quiz_controller.start_quiz(channel_id, language, level)

        if not result['success']:
            if result.get('error') == 'fetch_failed':
                logger.warning(f"Quiz start failed for channel {channel_id}: {result.get('message')}")
            await self.send_error_response(interaction, result['user_message'], "❌ Could Not Start Quiz")
            return

        info = result['session_info']
        embed = discord.Embed(
            title="🚀 Quiz Started!",
            description=(
                f"**{info['language']}** · {info['level'].capitalize()} · "
                f"{info['total_questions']} questions · {info['timer_duration']}s each"
            ),
            color=COLOR_BRAND
        )
        embed.set_footer(text="You have 3 lives and 2 power-ups. Good luck!")
        try:
            await interaction.followup.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to confirm quiz start for channel {channel_id}: {e}")

    async def handle_answer(self, interaction: discord.Interaction, label: str, question_index: int):
        """Handle an answer button press"""
        channel_id = interaction.channel_id
        snapshot = self.quiz_controller.get_snapshot(channel_id)
        if snapshot is None or not snapshot.is_active or snapshot.current_index != question_index:
            await self.send_warning_response(interaction, "That question is no longer open.")
            return

        result = self.quiz_controller.submit_answer(channel_id, label)
        if not result['success']:
            await self.send_warning_response(interaction, result['user_message'])
            return

        answer = result['result']
        verdict = "✅ Correct!" if answer.is_correct else f"❌ The answer was {answer.question.correct_answer}."
        await self.send_info_response(interaction, verdict, "Answer received")

    async def handle_boost(self, interaction: discord.Interaction):
        """Handle /boost command"""
        result = self.quiz_controller.use_boost(interaction.channel_id)
        if result['success']:
            await self.send_info_response(interaction, result['user_message'], "⚡ Power-up")
        else:
            await self.send_warning_response(interaction, result['user_message'])

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /quiz_status command"""
        summary = self.quiz_controller.get_session_status_summary(interaction.channel_id)
        await self.send_info_response(interaction, f"```\n{summary}\n```", "📊 Quiz Status")

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /quiz_stop command"""
        result = self.quiz_controller.stop_quiz(interaction.channel_id)
        if not result['success']:
            await self.send_warning_response(interaction, result['user_message'])
            return
        await self.send_info_response(interaction, f"Final score: **{round(result['snapshot'].score)}**", "🛑 Quiz Stopped")

    async def handle_leaderboard(self, interaction: discord.Interaction):
        """Handle /leaderboard command"""
        embed = build_leaderboard_embed(self.quiz_controller.leaderboard.entries())
        try:
            await interaction.response.send_message(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send leaderboard: {e}")

    async def handle_setting(self, interaction: discord.Interaction, result: Dict):
        """Report the outcome of a settings command"""
        if result['success']:
            await self.send_info_response(interaction, result['user_message'], "⚙️ Settings Updated")
        else:
            await self.send_error_response(interaction, result['user_message'], "❌ Invalid Setting")

    async def _send_embed(self, interaction: discord.Interaction, embed: discord.Embed):
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            logger.error(f"Failed to send response to user: {e}")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        embed = discord.Embed(title=title, description=message, color=COLOR_ERROR)
        embed.set_footer(text="If this error persists, try using /help for available commands")
        await self._send_embed(interaction, embed)

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=COLOR_INFO))

    async def send_warning_response(self, interaction: discord.Interaction, message: str, title: str = "⚠️ Warning"):
        """Send formatted warning response to user"""
        await self._send_embed(interaction, discord.Embed(title=title, description=message, color=COLOR_WARN))


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Language Quiz Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
