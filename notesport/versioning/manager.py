"""
Git version management for notesport.

This module keeps an export directory under Git so every export run leaves
one commit, giving a history of how notes changed between exports.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

import git
from git import InvalidGitRepositoryError, Repo


GITIGNORE = """# notesport Git ignore file
*.tmp
.DS_Store
Thumbs.db
"""


class VersionManager:
    """
    Manages Git operations for an export directory.

    Failures are logged and reported through boolean return values; a
    failing commit never fails the export that produced the files.
    """

    def __init__(self, repo_path: str = "export"):
        """
        Initialize the version manager.

        Args:
            repo_path: Path to the Git repository (the export directory)
        """
        self.repo_path = Path(repo_path)
        self.repo: Optional[Any] = None

        logging.debug(f"Initialized VersionManager for: {self.repo_path}")

    def initialize_repository(self) -> bool:
        """
        Initialize a Git repository if it doesn't exist.

        Returns:
            True if repository was initialized or already exists, False on error
        """
        try:
            if self._is_git_repository():
                self.repo = Repo(self.repo_path)
                return True

            self.repo_path.mkdir(parents=True, exist_ok=True)
            self.repo = Repo.init(self.repo_path)

            gitignore_path = self.repo_path / ".gitignore"
            if not gitignore_path.exists():
                gitignore_path.write_text(GITIGNORE, encoding="utf-8")
            self.repo.index.add([".gitignore"])
            self.repo.index.commit(
                "Initial commit: Add .gitignore",
                author=self._actor(),
                committer=self._actor(),
            )

            logging.info(f"Git repository initialized in {self.repo_path}")
            return True

        except (git.GitError, OSError) as e:
            logging.error(f"Failed to initialize Git repository: {e}")
            return False

    def _is_git_repository(self) -> bool:
        """Check if the path is already a Git repository."""
        try:
            if not self.repo_path.exists():
                return False
            Repo(self.repo_path)
            return True
        except InvalidGitRepositoryError:
            return False

    def _actor(self) -> git.Actor:
        return git.Actor("notesport", "notesport@localhost")

    def stage_files(self, file_paths: List[str]) -> bool:
        """
        Stage multiple files for commit.

        Args:
            file_paths: File paths, absolute or relative to the repository root

        Returns:
            True if all files were staged successfully, False otherwise
        """
        if not self.repo:
            logging.error("Repository not initialized")
            return False

        try:
            rel_paths = []
            for file_path in file_paths:
                rel_path = Path(file_path)
                if rel_path.is_absolute():
                    rel_path = rel_path.relative_to(self.repo_path.resolve())
                rel_paths.append(rel_path.as_posix())

            self.repo.index.add(rel_paths)
            logging.debug(f"Staged {len(rel_paths)} files")
            return True

        except (git.GitError, OSError, ValueError) as e:
            logging.error(f"Failed to stage files: {e}")
            return False

    def commit_changes(self, message: str) -> bool:
        """
        Commit staged changes.

        Args:
            message: Commit message

        Returns:
            True if commit was successful or there was nothing to commit
        """
        if not self.repo:
            logging.error("Repository not initialized")
            return False

        try:
            if not self.repo.index.diff("HEAD"):
                logging.info("No changes to commit")
                return True

            commit = self.repo.index.commit(message, author=self._actor(), committer=self._actor())
            logging.info(f"Created commit: {commit.hexsha[:8]} - {message.splitlines()[0]}")
            return True

        except (git.GitError, ValueError) as e:
            logging.error(f"Failed to commit changes: {e}")
            return False

    def create_export_commit(self, file_paths: List[str],
                             message_template: str = "Export {count} notes on {timestamp}") -> bool:
        """
        Commit the files written by one export run.

        Args:
            file_paths: Files written by the export
            message_template: Message with {count} and {timestamp} placeholders

        Returns:
            True if the files were committed (or unchanged), False on error
        """
        if not self.repo and not self.initialize_repository():
            return False

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        message = message_template.format(count=len(file_paths), timestamp=timestamp)
        if self.stage_files(file_paths):
            return self.commit_changes(message)
        return False

    def get_commit_history(self, limit: int = 10) -> List[dict]:
        """
        Get the commit history for the repository.

        Args:
            limit: Maximum number of commits to return

        Returns:
            List of commit information dictionaries
        """
        if not self.repo:
            logging.error("Repository not initialized")
            return []

        try:
            commits = []
            for commit in self.repo.iter_commits(max_count=limit):
                commits.append({
                    'hash': commit.hexsha,
                    'short_hash': commit.hexsha[:8],
                    'message': commit.message.strip(),
                    'author': str(commit.author),
                    'date': commit.committed_datetime.isoformat(),
                    'files_changed': len(commit.stats.files)
                })

            return commits

        except (git.GitError, ValueError) as e:
            logging.error(f"Failed to get commit history: {e}")
            return []
