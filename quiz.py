import asyncio
import io

import discord

from base_bot import ClientError, log
from configurations import CONFIG
from models.quiz import MODES, Quiz

GAME_RUNNING = 'Finish the ongoing game before starting a new one!'
GAME_ENDED = 'Game ended! To start a new game in this thread use `/quiz play` in this thread. ' \
             'Using the command again in a normal channel will create a new thread.'


class QuizGame:
    """One running game: a thread, a list of questions and the first correct answer per round."""

    def __init__(self, client, views, game, mode='normal', time=20, rounds=5, questions=None):
        self.client = client
        self.views = views
        self.game = game
        self.mode = mode
        self.time = time
        self.questions = questions or []
        self.rounds = min(rounds, len(self.questions)) if self.questions else rounds
        self.reward = game['reward'] * MODES[mode]
        self.tournament = CONFIG.get('quiz_tournament', False)

    async def get_thread(self, interaction):
        reason = f'Quiz started by {interaction.user}'
        channel = interaction.channel
        if isinstance(channel, discord.Thread):
            if channel.owner_id == self.client.user.id and channel.name != self.game['name']:
                await channel.edit(name=self.game['name'], reason=reason)
            return channel
        thread = await interaction.message.create_thread(name=self.game['name'], auto_archive_duration=60,
                                                         reason=reason)
        await thread.add_user(interaction.user)
        return thread

    def is_answer(self, thread, question):
        def check(message):
            return message.channel.id == thread.id and not message.author.bot \
                and Quiz.is_correct(question, message.content)

        return check

    async def ask(self, thread, index, question):
        e = self.views.render_quiz_question(self.game, question, index, self.rounds)
        kwargs = {}
        if question['type'] == 'image':
            kwargs['file'] = discord.File(io.BytesIO(question['image']), filename='question.jpg')
        question_message = await thread.send(embed=e, **kwargs)
        try:
            answer = await self.client.wait_for('message', check=self.is_answer(thread, question), timeout=self.time)
        except asyncio.TimeoutError:
            text = 'Looks like nobody got the right answer this time...'
            if index + 1 < len(self.questions):
                text += f' Next round starts in {CONFIG.get("quiz_round_delay_seconds")} seconds!'
            await question_message.reply(text)
            return None
        score, added_score = Quiz.add_points(answer.author.id, self.reward, self.tournament)
        text = f'That is the correct answer! You now have **{score["points"]:,g}** (+{self.reward:g}) points'
        if self.tournament:
            text += f' and a score of **{score["score"]:,g}** (+{added_score:g})'
        await answer.reply(f'{text}!')
        return answer.author

    async def play(self, thread):
        await thread.send(f'Game starting in {CONFIG.get("quiz_start_delay_seconds")} seconds...')
        await asyncio.sleep(CONFIG.get('quiz_start_delay_seconds'))
        winners = []
        for index, question in enumerate(self.questions):
            winners.append(await self.ask(thread, index, question))
            if index + 1 < len(self.questions):
                await asyncio.sleep(CONFIG.get('quiz_round_delay_seconds'))
        Quiz.mark_played(self.game['id'])
        try:
            await thread.send(GAME_ENDED)
        except discord.HTTPException as e:
            log.warning(f'Could not announce the end of {self.game["name"]} in {thread}: {e}')
        return winners


class QuizManager:
    def __init__(self, client, views, lock):
        self.client = client
        self.views = views
        self.lock = lock

    def prepare(self, game_id, mode, time, rounds):
        game = Quiz.get_game(game_id)
        if game is None:
            raise ClientError('That is not a valid game...')
        questions = Quiz.sample_questions(game['tag'], mode, rounds)
        if not questions:
            raise ClientError('There are no questions for this game yet...')
        return QuizGame(self.client, self.views, game, mode, time, rounds, questions)

    async def start(self, interaction, game):
        guild_id = interaction.guild_id
        with self.lock.hold(guild_id, GAME_RUNNING):
            log.debug(f'{game.game["name"]} was started in {interaction.guild}.')
            thread = await game.get_thread(interaction)
            await game.play(thread)
