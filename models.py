"""Database models — users, industry insights, resumes, cover letters, assessments."""

import json
from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _load_json(val, default):
    try:
        return json.loads(val) if val else default
    except (json.JSONDecodeError, TypeError):
        return default


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    google_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(256), nullable=False, index=True)
    name = db.Column(db.String(256))
    picture = db.Column(db.String(512))

    # Profile (set during onboarding)
    industry = db.Column(db.String(200), index=True)       # e.g. 'tech-software-development'
    sub_industry = db.Column(db.String(200))
    experience = db.Column(db.Integer)                      # years, 0-50
    bio = db.Column(db.Text)
    skills = db.Column(db.Text, default='[]')               # JSON array of strings

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    last_login = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<User {self.email}>'

    def get_skills(self) -> list:
        return _load_json(self.skills, [])

    def set_skills(self, skills: list):
        self.skills = json.dumps(skills if skills else [])

    def to_dict(self):
        return {
            'id': self.id,
            'email': self.email,
            'name': self.name or '',
            'picture': self.picture or '',
            'industry': self.industry,
            'sub_industry': self.sub_industry,
            'experience': self.experience,
            'bio': self.bio or '',
            'skills': self.get_skills(),
        }


class IndustryInsight(db.Model):
    """Cached AI analysis for one industry key.

    Written only by the insight refresher; list columns hold JSON text.
    """
    __tablename__ = 'industry_insights'

    industry = db.Column(db.String(200), primary_key=True)
    salary_ranges = db.Column(db.Text, nullable=False, default='[]')      # [{role,min,max,median,location}]
    growth_rate = db.Column(db.Float, nullable=False, default=0.0)        # percent
    demand_level = db.Column(db.String(10), nullable=False, default='MEDIUM')      # HIGH|MEDIUM|LOW
    top_skills = db.Column(db.Text, nullable=False, default='[]')
    market_outlook = db.Column(db.String(10), nullable=False, default='NEUTRAL')   # POSITIVE|NEUTRAL|NEGATIVE
    key_trends = db.Column(db.Text, nullable=False, default='[]')
    recommended_skills = db.Column(db.Text, nullable=False, default='[]')
    last_updated = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    next_update = db.Column(db.DateTime)                                  # advisory only

    def __repr__(self):
        return f'<IndustryInsight {self.industry} updated={self.last_updated}>'

    def to_dict(self):
        return {
            'industry': self.industry,
            'salary_ranges': _load_json(self.salary_ranges, []),
            'growth_rate': self.growth_rate,
            'demand_level': self.demand_level,
            'top_skills': _load_json(self.top_skills, []),
            'market_outlook': self.market_outlook,
            'key_trends': _load_json(self.key_trends, []),
            'recommended_skills': _load_json(self.recommended_skills, []),
            'last_updated': self.last_updated,
            'next_update': self.next_update,
        }


class Resume(db.Model):
    """One Markdown resume per user."""
    __tablename__ = 'resumes'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, unique=True, index=True)
    content = db.Column(db.Text, nullable=False, default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('resume', uselist=False))

    def __repr__(self):
        return f'<Resume user={self.user_id}>'

    def to_dict(self):
        return {
            'id': self.id,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class CoverLetter(db.Model):
    __tablename__ = 'cover_letters'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    company_name = db.Column(db.String(200), nullable=False)
    job_title = db.Column(db.String(200), nullable=False)
    job_description = db.Column(db.Text)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('cover_letters', lazy='dynamic'))

    def __repr__(self):
        return f'<CoverLetter id={self.id} user={self.user_id} company={self.company_name}>'

    def to_dict(self):
        return {
            'id': self.id,
            'company_name': self.company_name,
            'job_title': self.job_title,
            'job_description': self.job_description or '',
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Assessment(db.Model):
    """A completed mock-interview quiz."""
    __tablename__ = 'assessments'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    quiz_score = db.Column(db.Float, nullable=False)        # 0-100
    questions = db.Column(db.Text, nullable=False, default='[]')   # JSON: per-question results
    category = db.Column(db.String(50), default='Technical')
    improvement_tip = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', backref=db.backref('assessments', lazy='dynamic'))

    def __repr__(self):
        return f'<Assessment id={self.id} user={self.user_id} score={self.quiz_score}>'

    def get_questions(self) -> list:
        return _load_json(self.questions, [])

    def to_dict(self):
        return {
            'id': self.id,
            'quiz_score': self.quiz_score,
            'questions': self.get_questions(),
            'category': self.category,
            'improvement_tip': self.improvement_tip,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
