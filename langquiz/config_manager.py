"""
Configuration manager for Language Quiz Bot settings and parameters.
"""
import logging
from typing import Any, Dict, List
from pathlib import Path
from urllib.parse import urlparse

from .models import QuizLevel, QuizSettings, QUESTION_TIME
from .question_source import DEFAULT_API_ENDPOINT


class ConfigManager:
    """Manages bot configuration settings and quiz parameters."""

    # Default configuration values
    DEFAULT_LANGUAGE = "Marathi"
    DEFAULT_LEVEL = QuizLevel.INTERMEDIATE
    DEFAULT_TIMER_DURATION = QUESTION_TIME
    DEFAULT_QUESTION_SOURCE = "http"
    DEFAULT_API_ENDPOINT = DEFAULT_API_ENDPOINT
    DEFAULT_QUIZ_DIRECTORY = "./quizzes/"
    DEFAULT_LEADERBOARD_SIZE = 10
    DEFAULT_PLAYER_NAME = "Player"

    QUESTION_SOURCES = ("http", "file")

    # Validation limits
    MIN_TIMER_DURATION = 5
    MAX_TIMER_DURATION = 300  # 5 minutes
    MIN_LEADERBOARD_SIZE = 1
    MAX_LEADERBOARD_SIZE = 100
    MAX_LANGUAGE_LENGTH = 50

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self.reset_to_defaults()

    def apply_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply the ``quiz`` section of a config.json dictionary.

        Invalid values are skipped and the defaults kept.

        Returns:
            List of error messages for values that were rejected
        """
        quiz_config = config.get('quiz', {}) if isinstance(config, dict) else {}
        setters = [
            ('default_language', self.set_language),
            ('default_level', self.set_level),
            ('default_timer_duration', self.set_timer_duration),
            ('question_source', self.set_question_source),
            ('api_endpoint', self.set_api_endpoint),
            ('quiz_directory', self.set_quiz_directory),
            ('leaderboard_size', self.set_leaderboard_size),
            ('player_name', self.set_player_name),
        ]
        errors = []
        for key, setter in setters:
            if key not in quiz_config:
                continue
            result = setter(quiz_config[key])
            if not result['success']:
                errors.append(f"{key}: {result['error']}")
        if errors:
            self.logger.warning(f"Configuration applied with {len(errors)} rejected values")
        else:
            self.logger.info("Configuration applied successfully")
        return errors

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            New QuizSettings object with current configuration
        """
        return QuizSettings(
            language=self._language,
            level=self._level,
            timer_duration=self._timer_duration,
            player_name=self._player_name
        )

    def _failure(self, error_msg: str, user_message: str) -> Dict[str, Any]:
        self.logger.error(error_msg)
        return {
            'success': False,
            'error': error_msg,
            'user_message': user_message
        }

    def _success(self, message: str, user_message: str) -> Dict[str, Any]:
        self.logger.info(message)
        return {
            'success': True,
            'message': message,
            'user_message': user_message
        }

    def set_language(self, language: str) -> Dict[str, Any]:
        """
        Set the default quiz language.

        Args:
            language: Language name, e.g. "Marathi"

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(language, str):
            return self._failure(
                f"Language must be a string, got {type(language).__name__}",
                f"❌ Invalid input: Expected a language name, got {type(language).__name__}"
            )
        language = language.strip()
        if not language:
            return self._failure("Language cannot be empty", "❌ Language cannot be empty")
        if len(language) > self.MAX_LANGUAGE_LENGTH:
            return self._failure(
                f"Language name cannot exceed {self.MAX_LANGUAGE_LENGTH} characters",
                "❌ Language name is too long"
            )

        self._language = language
        return self._success(f"Language set to {language}", f"✅ Quizzes will use {language}")

    def get_language(self) -> str:
        return self._language

    def set_level(self, level) -> Dict[str, Any]:
        """
        Set the default difficulty level.

        Args:
            level: QuizLevel or one of "beginner", "intermediate", "advanced"

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        try:
            parsed = QuizLevel.parse(level)
        except ValueError as e:
            return self._failure(
                str(e),
                "❌ Level must be one of: " + ", ".join(lvl.value for lvl in QuizLevel)
            )

        self._level = parsed
        return self._success(f"Level set to {parsed.value}", f"✅ Level set to {parsed.value}")

    def get_level(self) -> QuizLevel:
        return self._level

    def set_timer_duration(self, duration: int) -> Dict[str, Any]:
        """
        Set the timer duration for each question.

        Args:
            duration: Timer duration in seconds

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(duration, int) or isinstance(duration, bool):
            return self._failure(
                f"Timer duration must be an integer, got {type(duration).__name__}",
                f"❌ Invalid input: Expected a number, got {type(duration).__name__}"
            )

        if duration < self.MIN_TIMER_DURATION:
            return self._failure(
                f"Timer duration must be at least {self.MIN_TIMER_DURATION} seconds",
                f"❌ Timer too short: Minimum is {self.MIN_TIMER_DURATION} seconds"
            )

        if duration > self.MAX_TIMER_DURATION:
            return self._failure(
                f"Timer duration cannot exceed {self.MAX_TIMER_DURATION} seconds",
                f"❌ Timer too long: Maximum is {self.MAX_TIMER_DURATION} seconds ({self.MAX_TIMER_DURATION // 60} minutes)"
            )

        self._timer_duration = duration
        return self._success(f"Timer duration set to {duration} seconds", f"✅ Timer set to {duration} seconds")

    def get_timer_duration(self) -> int:
        return self._timer_duration

    def set_question_source(self, source: str) -> Dict[str, Any]:
        """Choose between the HTTP quiz service and local question banks."""
        if not isinstance(source, str) or source.strip().lower() not in self.QUESTION_SOURCES:
            return self._failure(
                f"Question source must be one of {', '.join(self.QUESTION_SOURCES)}, got {source!r}",
                "❌ Question source must be 'http' or 'file'"
            )
        self._question_source = source.strip().lower()
        return self._success(
            f"Question source set to {self._question_source}",
            f"✅ Questions will come from the {self._question_source} source"
        )

    def get_question_source(self) -> str:
        return self._question_source

    def set_api_endpoint(self, endpoint: str) -> Dict[str, Any]:
        """
        Set the quiz generator endpoint.

        Args:
            endpoint: Absolute http(s) URL

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(endpoint, str) or not endpoint.strip():
            return self._failure("API endpoint must be a non-empty string", "❌ API endpoint cannot be empty")

        parsed = urlparse(endpoint.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return self._failure(
                f"API endpoint must be an http(s) URL: {endpoint}",
                f"❌ Invalid endpoint URL: {endpoint}"
            )

        self._api_endpoint = endpoint.strip()
        return self._success(f"API endpoint set to {self._api_endpoint}", "✅ Quiz service endpoint updated")

    def get_api_endpoint(self) -> str:
        return self._api_endpoint

    def set_quiz_directory(self, directory: str) -> Dict[str, Any]:
        """
        Set the directory path for question bank files.

        Args:
            directory: Path to question bank directory

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(directory, str):
            return self._failure(
                f"Quiz directory must be a string, got {type(directory).__name__}",
                f"❌ Invalid input: Expected a path string, got {type(directory).__name__}"
            )

        if not directory.strip():
            return self._failure("Quiz directory cannot be empty", "❌ Directory path cannot be empty")

        try:
            normalized_path = str(Path(directory).resolve())
        except (OSError, ValueError) as e:
            return self._failure(f"Invalid directory path format: {e}", f"❌ Invalid path format: {directory}")

        system_dirs = ['/bin', '/usr', '/etc', '/sys', '/proc', 'C:\\Windows', 'C:\\Program Files']
        if any(normalized_path.startswith(sys_dir) for sys_dir in system_dirs):
            return self._failure(
                f"Cannot use system directory: {normalized_path}",
                f"❌ Cannot use system directory: {directory}"
            )

        self._quiz_directory = normalized_path
        return self._success(f"Quiz directory set to {normalized_path}", f"✅ Quiz directory set to {normalized_path}")

    def get_quiz_directory(self) -> str:
        return self._quiz_directory

    def set_leaderboard_size(self, size: int) -> Dict[str, Any]:
        if not isinstance(size, int) or isinstance(size, bool):
            return self._failure(
                f"Leaderboard size must be an integer, got {type(size).__name__}",
                "❌ Invalid input: Expected a number"
            )
        if not self.MIN_LEADERBOARD_SIZE <= size <= self.MAX_LEADERBOARD_SIZE:
            return self._failure(
                f"Leaderboard size must be between {self.MIN_LEADERBOARD_SIZE} and {self.MAX_LEADERBOARD_SIZE}",
                f"❌ Leaderboard size must be between {self.MIN_LEADERBOARD_SIZE} and {self.MAX_LEADERBOARD_SIZE}"
            )
        self._leaderboard_size = size
        return self._success(f"Leaderboard size set to {size}", f"✅ Leaderboard keeps the top {size} scores")

    def get_leaderboard_size(self) -> int:
        return self._leaderboard_size

    def set_player_name(self, name: str) -> Dict[str, Any]:
        """Name recorded on the leaderboard for finished sessions."""
        if not isinstance(name, str) or not name.strip():
            return self._failure("Player name must be a non-empty string", "❌ Player name cannot be empty")
        self._player_name = name.strip()
        return self._success(f"Player name set to {self._player_name}", f"✅ Scores will be recorded as {self._player_name}")

    def get_player_name(self) -> str:
        return self._player_name

    def reset_to_defaults(self) -> None:
        """Reset all settings to their default values."""
        self._language = self.DEFAULT_LANGUAGE
        self._level = self.DEFAULT_LEVEL
        self._timer_duration = self.DEFAULT_TIMER_DURATION
        self._question_source = self.DEFAULT_QUESTION_SOURCE
        self._api_endpoint = self.DEFAULT_API_ENDPOINT
        self._quiz_directory = self.DEFAULT_QUIZ_DIRECTORY
        self._leaderboard_size = self.DEFAULT_LEADERBOARD_SIZE
        self._player_name = self.DEFAULT_PLAYER_NAME
        self.logger.info("All settings reset to default values")

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        if not isinstance(self._language, str) or not self._language.strip():
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid language: {self._language}")

        if not isinstance(self._level, QuizLevel):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid level: {self._level}")

        if (not isinstance(self._timer_duration, int) or
                self._timer_duration < self.MIN_TIMER_DURATION or
                self._timer_duration > self.MAX_TIMER_DURATION):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid timer duration: {self._timer_duration}")

        if self._question_source not in self.QUESTION_SOURCES:
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid question source: {self._question_source}")

        if (not isinstance(self._leaderboard_size, int) or
                not self.MIN_LEADERBOARD_SIZE <= self._leaderboard_size <= self.MAX_LEADERBOARD_SIZE):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid leaderboard size: {self._leaderboard_size}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        if self._question_source == "file":
            source_str = f"question banks in {self._quiz_directory}"
        else:
            source_str = self._api_endpoint

        return (
            f"Quiz Settings:\n"
            f"• Language: {self._language}\n"
            f"• Level: {self._level.value}\n"
            f"• Timer: {self._timer_duration} seconds\n"
            f"• Source: {source_str}\n"
            f"• Leaderboard: top {self._leaderboard_size}"
        )

    def get_user_friendly_validation_errors(self) -> List[str]:
        """
        Get user-friendly validation error messages for current settings.

        Returns:
            List of user-friendly error messages
        """
        user_friendly_errors = []

        for issue in self.validate_settings().get("issues", []):
            if "timer duration" in issue.lower():
                user_friendly_errors.append(
                    f"❌ Timer Duration Issue: {issue}. "
                    f"Please set a value between {self.MIN_TIMER_DURATION} and {self.MAX_TIMER_DURATION} seconds."
                )
            elif "level" in issue.lower():
                user_friendly_errors.append(
                    f"❌ Level Issue: {issue}. Please use /set_level to choose a level."
                )
            else:
                user_friendly_errors.append(f"❌ Configuration Issue: {issue}")

        return user_friendly_errors

