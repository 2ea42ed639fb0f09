"""Per-build orchestration of challenge checks and generation."""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

from pytest_gamify import constants, git_diff
from pytest_gamify.achievements import (
    Achievement,
    AchievementContext,
    check_achievements,
    load_achievements,
)
from pytest_gamify.evaluation import Outcome, evaluate, is_solvable
from pytest_gamify.events import (
    Event,
    EventChannel,
    EventKind,
    LoggingNotifier,
    Notifier,
    deliver,
)
from pytest_gamify.factory import generate_build_challenge, generate_new_challenges, user_files
from pytest_gamify.lifecycle import GameUser, Project, UserProjectState
from pytest_gamify.models import (
    BuildParameters,
    BuildRun,
    BuildSummary,
    SourceFileDetails,
    UserSummary,
)
from pytest_gamify.quests import QuestProgress, advance, generate_new_quests
from pytest_gamify.render import escaped
from pytest_gamify.reports import ReportReader
from pytest_gamify.resources import ResourceLimits
from pytest_gamify.store import GameStore, PersistenceError

logger = logging.getLogger(__name__)

Publish = Callable[[EventKind, str], None]


class Engine:
    """Runs the challenge pipeline of every participant for one build."""

    def __init__(
        self,
        store: GameStore,
        notifier: Notifier | None = None,
        limits: ResourceLimits | None = None,
        achievements: list[Achievement] | None = None,
        auto_join: bool = False,
        rng: random.Random | None = None,
        file_source: Callable[[BuildParameters], list[SourceFileDetails]] = git_diff.last_changed_files,
        head_identity: Callable[[str], tuple[str, str] | None] = git_diff.head_identity,
    ) -> None:
        self.store = store
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.limits = limits if limits is not None else ResourceLimits()
        self.achievements = achievements if achievements is not None else load_achievements()
        self.auto_join = auto_join
        self.rng = rng if rng is not None else random.Random()
        self.file_source = file_source
        self.head_identity = head_identity

    def _join_head_author(
        self, users: dict[str, GameUser], project: Project, identity: tuple[str, str] | None
    ) -> bool:
        if identity is None:
            return False
        name, email = identity
        authors = {name, email} - {""}
        if any(user.matches(authors) for user in users.values() if project.participant(user.id)):
            return False
        user = next((u for u in users.values() if u.matches(authors)), None)
        if user is None:
            user = GameUser(id=email or name, full_name=name, email=email)
            users[user.id] = user
        project.join(user.id)
        return True

    def run(self, parameters: BuildParameters, run: BuildRun) -> BuildSummary:
        start = time.monotonic()
        try:
            users = self.store.load_users()
            project = self.store.load_project(parameters)
        except PersistenceError:
            logger.exception("Loading the game state of %s failed", parameters.project_name)
            return BuildSummary(parameters.project_name, run.number, run.result)
        identity = self.head_identity(parameters.workspace)
        head_authors = {part for part in identity or () if part}

        users_changed = self.auto_join and self._join_head_author(users, project, identity)
        files = self.file_source(parameters)
        logger.info(
            "Build #%d of %s: %d changed files, %d participants",
            run.number, project.name, len(files), len(project.states),
        )

        channel = EventChannel()
        participants = [
            (users[user_id], state)
            for user_id, state in sorted(project.states.items())
            if user_id in users
        ]
        summary = BuildSummary(project.name, run.number, run.result)

        with ReportReader(parameters.report_timeout) as reader:
            workers = self.limits.workers_for(len(participants))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gamify-user") as pool:
                futures = [
                    pool.submit(
                        self.check_user,
                        user, state, parameters, run, files, head_authors, reader, channel,
                        random.Random(self.rng.random()),
                    )
                    for user, state in participants
                ]
                summary.users = [future.result() for future in futures]

        try:
            self.store.save_project(project)
            if users_changed:
                self.store.save_users(users)
        except PersistenceError:
            logger.exception("Saving the game state of %s failed", project.name)

        summary.notifications_sent = deliver(
            channel.drain(), users, project.name, run.number, self.notifier
        )
        summary.wall_time_seconds = time.monotonic() - start
        return summary

    def check_user(
        self,
        user: GameUser,
        state: UserProjectState,
        parameters: BuildParameters,
        run: BuildRun,
        files: list[SourceFileDetails],
        head_authors: set[str],
        reader: ReportReader,
        channel: EventChannel,
        rng: random.Random,
    ) -> UserSummary:
        """One user's pass, in order: checks, then generation, then achievements.

        Any failure is logged and reported; the user's lists keep whatever
        moves completed before it.
        """
        result = UserSummary(user.id)

        def publish(kind: EventKind, text: str) -> None:
            channel.publish(Event(kind, user.id, parameters.project_name, text, run.number))

        try:
            with state.lock:
                state.drop_dummies()
                build = generate_build_challenge(user, state, parameters, run, head_authors)
                if build is not None:
                    result.generated += 1
                    publish(EventKind.CHALLENGE_GENERATED, escaped(build))

                self._check_current(state, parameters, run, reader, result, publish)
                self._check_stored(state, parameters, run, reader, result, publish)
                self._check_quests(state, parameters, run, reader, result, publish)

                result.generated += generate_new_challenges(
                    user, state, parameters, files, reader, rng,
                    on_generated=lambda c: publish(EventKind.CHALLENGE_GENERATED, escaped(c)),
                )
                result.quests_generated = generate_new_quests(
                    user, state, parameters, files, reader, rng,
                    on_generated=lambda q: publish(EventKind.QUEST_GENERATED, str(q)),
                )

                context = AchievementContext(
                    state, parameters, run, user_files(user, files), result.solved, reader
                )
                for achievement in check_achievements(context, self.achievements):
                    result.achievements.append(achievement.title)
                    publish(EventKind.ACHIEVEMENT_SOLVED, str(achievement))
                result.score = state.score
        except Exception:
            logger.exception("Gamification pass for %s failed", user.id)
            result.failed = True
        return result

    def _check_current(
        self,
        state: UserProjectState,
        parameters: BuildParameters,
        run: BuildRun,
        reader: ReportReader,
        result: UserSummary,
        publish: Publish,
    ) -> None:
        for challenge in state.get_current_challenges():
            outcome = evaluate(challenge, parameters, run, reader)
            if outcome is Outcome.SOLVED:
                state.complete_challenge(challenge)
                result.solved += 1
                publish(EventKind.CHALLENGE_SOLVED, escaped(challenge))
            elif outcome is Outcome.UNSOLVABLE:
                state.reject_challenge(challenge, constants.NOT_SOLVABLE)
                result.unsolvable += 1
                publish(EventKind.CHALLENGE_UNSOLVABLE, escaped(challenge))

    def _check_stored(
        self,
        state: UserProjectState,
        parameters: BuildParameters,
        run: BuildRun,
        reader: ReportReader,
        result: UserSummary,
        publish: Publish,
    ) -> None:
        # Stored challenges wait for the user; only vanished targets are dropped
        for challenge in state.get_stored_challenges():
            try:
                solvable = is_solvable(challenge, parameters, run, reader)
            except Exception:
                logger.exception("Could not check stored challenge %s", challenge.id)
                continue
            if not solvable:
                state.reject_stored_challenge(challenge, constants.NOT_SOLVABLE)
                result.unsolvable += 1
                publish(EventKind.CHALLENGE_UNSOLVABLE, escaped(challenge))

    def _check_quests(
        self,
        state: UserProjectState,
        parameters: BuildParameters,
        run: BuildRun,
        reader: ReportReader,
        result: UserSummary,
        publish: Publish,
    ) -> None:
        for quest in state.get_current_quests():
            if quest.is_placeholder:
                continue
            progress = advance(quest, parameters, run, reader)
            if progress is QuestProgress.STEP_SOLVED:
                result.quest_steps_solved += 1
                publish(EventKind.QUEST_STEP_SOLVED, f"{quest.name}: step {quest.current_step}")
            elif progress is QuestProgress.SOLVED:
                result.quest_steps_solved += 1
                result.quests_solved += 1
                state.complete_quest(quest)
                publish(EventKind.QUEST_SOLVED, quest.name)
            elif progress is QuestProgress.UNSOLVABLE:
                state.reject_quest(quest, constants.NOT_SOLVABLE)
                publish(EventKind.QUEST_UNSOLVABLE, quest.name)
