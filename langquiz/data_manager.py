"""
Data manager for local JSON question banks.

Banks live in the quiz directory as ``<language>_<level>.json`` files using
the same payload format as the quiz generator service, so a directory of
banks can stand in for the HTTP source when playing offline.
"""
import json
import os
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import Question, QuizLevel
from .question_source import QuestionSourceError, parse_questions


SAMPLE_BANK = {
    "questions": [
        {
            "question_id": 1,
            "english_text": "How do you say 'water' in Marathi?",
            "context": "Everyday nouns",
            "options": {"A": "पाणी", "B": "दूध", "C": "घर", "D": "झाड"},
            "correct_answer": "A",
            "explanation": "पाणी (paani) means water."
        },
        {
            "question_id": 2,
            "english_text": "How do you say 'thank you' in Marathi?",
            "context": "Greetings",
            "options": {"A": "नमस्कार", "B": "धन्यवाद", "C": "हो", "D": "नाही"},
            "correct_answer": "B",
            "explanation": "धन्यवाद (dhanyavaad) is the usual way to say thank you."
        },
        {
            "question_id": 3,
            "english_text": "What does 'घर' mean?",
            "context": "Everyday nouns",
            "options": {"A": "Tree", "B": "Milk", "C": "House", "D": "Road"},
            "correct_answer": "C",
            "explanation": "घर (ghar) means house or home."
        }
    ]
}


def bank_name(language: str, level) -> str:
    """File stem for a language/level bank, e.g. ``marathi_beginner``."""
    return f"{language.strip().lower()}_{QuizLevel.parse(level).value}"


class DataManager:
    """Loads and validates JSON question banks and serves them as a question source."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB limit

    def __init__(self, quiz_directory: str = "./quizzes/"):
        """
        Initialize DataManager with quiz directory path.

        Args:
            quiz_directory: Path to directory containing JSON question banks
        """
        self.quiz_directory = Path(quiz_directory)
        self.loaded_banks: Dict[str, List[Question]] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self.sample_bank_created = False

    def load_quiz_files(self) -> Dict[str, List[Question]]:
        """
        Load all JSON banks from the quiz directory.

        Files that fail to load are skipped and reported through
        get_load_errors().

        Returns:
            Dictionary mapping bank names to lists of Question objects
        """
        self.loaded_banks.clear()
        self.load_errors.clear()
        self.sample_bank_created = False

        directory_result = self._ensure_quiz_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self.loaded_banks

        scan_result = self._scan_quiz_files()
        if not scan_result['success']:
            self.load_errors.append(scan_result['error'])
            return self.loaded_banks

        json_files = scan_result['files']

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No quiz files found in {self.quiz_directory}")
            return self._create_sample_bank()

        successful_loads = 0
        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if load_result['success']:
                successful_loads += 1
            else:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if successful_loads == 0:
            self.logger.error("No quiz files could be loaded successfully")
        else:
            self.logger.info(f"Successfully loaded {successful_loads} quiz files")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_banks

    async def fetch_questions(self, language: str, level: QuizLevel) -> List[Question]:
        """
        Serve the bank for a language and level.

        Raises:
            QuestionSourceError: If no bank is loaded for the selection
        """
        if not self.loaded_banks:
            self.load_quiz_files()

        name = bank_name(language, level)
        questions = self.get_quiz_questions(name)
        if not questions:
            raise QuestionSourceError(f"No question bank found for {language} ({QuizLevel.parse(level).value})")
        return list(questions)

    def get_available_quizzes(self) -> List[str]:
        """
        Get list of available bank names.

        Returns:
            List of bank names (without file extensions)
        """
        return list(self.loaded_banks.keys())

    def get_quiz_questions(self, name: str) -> Optional[List[Question]]:
        return self.loaded_banks.get(name)

    def get_question_count(self, name: str) -> int:
        questions = self.get_quiz_questions(name)
        return len(questions) if questions else 0

    def _ensure_quiz_directory(self) -> Dict[str, Any]:
        """
        Ensure quiz directory exists and is readable.

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            if not self.quiz_directory.exists():
                self.quiz_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created quiz directory: {self.quiz_directory}")

            if not os.access(self.quiz_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.quiz_directory}"
                }

            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.quiz_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.quiz_directory}: {e}"
            }

    def _scan_quiz_files(self) -> Dict[str, Any]:
        """
        Scan quiz directory for JSON files.

        Returns:
            Dictionary with success status, files list, and error message if applicable
        """
        try:
            json_files = sorted(self.quiz_directory.glob("*.json"))
            return {
                'success': True,
                'files': json_files
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error scanning {self.quiz_directory}: {e}",
                'files': []
            }

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single bank file.

        Args:
            json_file: Path to the JSON file to load

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            questions = parse_questions(data)

            name = json_file.stem.lower()
            self.loaded_banks[name] = questions
            self.logger.info(f"Loaded question bank '{name}' with {len(questions)} questions")

            return {'success': True}

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {json_file}: {e}")
            return {
                'success': False,
                'error': f"Invalid JSON: {e}"
            }
        except QuestionSourceError as e:
            self.logger.error(f"Invalid quiz structure in {json_file}: {e}")
            return {
                'success': False,
                'error': str(e)
            }
        except PermissionError:
            return {
                'success': False,
                'error': "Permission denied"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error: {e}"
            }

    def _create_sample_bank(self) -> Dict[str, List[Question]]:
        """
        Write and load a small Marathi beginner bank when the directory is empty.

        Returns:
            Dictionary with the sample bank loaded
        """
        name = bank_name("Marathi", QuizLevel.BEGINNER)
        sample_file_path = self.quiz_directory / f"{name}.json"

        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(SAMPLE_BANK, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample question bank: {sample_file_path}")
        except OSError as e:
            self.logger.error(f"Failed to write sample question bank: {e}")
            self.load_errors.append(f"Failed to write sample question bank: {e}")

        self.loaded_banks[name] = parse_questions(SAMPLE_BANK)
        self.sample_bank_created = True
        return self.loaded_banks

    def get_load_errors(self) -> List[str]:
        """
        Get list of errors encountered during the last load operation.

        Returns:
            List of error messages
        """
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the last loading operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_banks': len(self.loaded_banks),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'sample_created': self.sample_bank_created,
            'quiz_directory': str(self.quiz_directory),
            'available_banks': self.get_available_quizzes(),
            'question_counts': {name: self.get_question_count(name) for name in self.get_available_quizzes()}
        }
