import datetime
import json
import random

from models import DB

MODES = {
    'easy': 0.5,
    'normal': 1,
    'hard': 2,
}


class Quiz:
    @staticmethod
    def get_game(game_id):
        db = DB()
        game = db.cursor.execute('SELECT * FROM QuizGame WHERE id = ?;', (game_id,)).fetchone()
        db.close()
        return game

    @staticmethod
    def games():
        db = DB()
        games = db.cursor.execute('SELECT * FROM QuizGame ORDER BY name;').fetchall()
        db.close()
        return games

    @staticmethod
    def add_game(game_id, name, tag, author, reward, base_question):
        db = DB()
        db.cursor.execute('INSERT INTO QuizGame (id, name, tag, author, reward, base_question, created) '
                          'VALUES (?, ?, ?, ?, ?, ?, ?) '
                          'ON CONFLICT (id) DO UPDATE SET name = ?, tag = ?, author = ?, reward = ?, base_question = ?;',
                          (game_id, name, tag, author, reward, base_question, datetime.datetime.utcnow(),
                           name, tag, author, reward, base_question))
        db.commit()
        db.close()

    @staticmethod
    def add_question(tag, difficulty, answers, question=None, image=None):
        question_type = 'image' if image is not None else 'text'
        db = DB()
        db.cursor.execute('INSERT INTO QuizQuestion (tag, difficulty, type, question, image, answers) '
                          'VALUES (?, ?, ?, ?, ?, ?);',
                          (tag, difficulty, question_type, question, image, json.dumps(answers)))
        db.commit()
        db.close()

    @staticmethod
    def import_file(filename):
        """Load games and text questions from a json file with ``games`` and ``questions`` lists."""
        with open(filename) as f:
            data = json.load(f)
        for game in data.get('games', []):
            Quiz.add_game(game['id'], game['name'], game['tag'], game['author'], game['reward'],
                          game.get('base_question', ''))
        for question in data.get('questions', []):
            Quiz.add_question(question['tag'], question['difficulty'], question['answers'], question['question'])
        return len(data.get('questions', []))

    @staticmethod
    def _difficulties(mode):
        return ['easy', 'hard'] if mode == 'normal' else [mode]

    @staticmethod
    def pool_size(tag, mode):
        difficulties = Quiz._difficulties(mode)
        placeholders = ', '.join('?' * len(difficulties))
        db = DB()
        result = db.cursor.execute(f'SELECT COUNT(*) FROM QuizQuestion WHERE tag = ? AND difficulty IN ({placeholders});',
                                   (tag, *difficulties))
        size = result.fetchone()[0]
        db.close()
        return size

    @staticmethod
    def sample_questions(tag, mode, amount):
        difficulties = Quiz._difficulties(mode)
        placeholders = ', '.join('?' * len(difficulties))
        db = DB()
        result = db.cursor.execute(f'SELECT * FROM QuizQuestion WHERE tag = ? AND difficulty IN ({placeholders}) '
                                   f'ORDER BY RANDOM() LIMIT ?;', (tag, *difficulties, amount))
        questions = [dict(row, answers=json.loads(row['answers'])) for row in result.fetchall()]
        db.close()
        return questions

    @staticmethod
    def mark_played(game_id):
        db = DB()
        db.cursor.execute('UPDATE QuizGame SET played = played + 1 WHERE id = ?;', (game_id,))
        db.commit()
        db.close()

    @staticmethod
    def add_points(user_id, points, tournament=False):
        score = round(random.random() * points, 2) if tournament else None
        db = DB()
        db.cursor.execute('INSERT INTO QuizScore (user_id, points, score) VALUES (?, ?, ?) '
                          'ON CONFLICT (user_id) DO UPDATE SET points = points + ?, '
                          'score = CASE WHEN ? IS NULL THEN score ELSE COALESCE(score, 0) + ? END;',
                          (user_id, points, score, points, score, score))
        db.commit()
        row = db.cursor.execute('SELECT * FROM QuizScore WHERE user_id = ?;', (user_id,)).fetchone()
        db.close()
        return row, score

    @staticmethod
    def get_score(user_id):
        db = DB()
        row = db.cursor.execute('SELECT * FROM QuizScore WHERE user_id = ?;', (user_id,)).fetchone()
        db.close()
        return row

    @staticmethod
    def leaderboard(column='points', limit=10):
        if column not in ('points', 'score'):
            raise KeyError(column)
        db = DB()
        total = db.cursor.execute(f'SELECT COUNT(*) FROM QuizScore WHERE {column} IS NOT NULL;').fetchone()[0]
        result = db.cursor.execute(f'SELECT s.user_id, s.{column} AS value, COALESCE(u.name, \'unknown\') AS name '
                                   f'FROM QuizScore s LEFT JOIN User u ON u.id = s.user_id '
                                   f'WHERE s.{column} IS NOT NULL ORDER BY s.{column} DESC LIMIT ?;', (limit,))
        rows = result.fetchall()
        db.close()
        return rows, total

    @staticmethod
    def is_correct(question, answer):
        return any(a.lower() == answer.strip().lower() for a in question['answers'])
