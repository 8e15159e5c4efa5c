"""User directory database models."""

from sqlalchemy import Column, Integer, String, text
from flask_sqlalchemy import SQLAlchemy

db: SQLAlchemy = SQLAlchemy()


class DBUser(db.Model):  # type: ignore
    """
    A user account in the directory.

    +---------------------+--------------+------+-----+---------+----------------+
    | Field               | Type         | Null | Key | Default | Extra          |
    +---------------------+--------------+------+-----+---------+----------------+
    | user_id             | int(4)       | NO   | PRI | NULL    | auto_increment |
    | username            | varchar(64)  | NO   | UNI |         |                |
    | email               | varchar(255) | NO   | UNI |         |                |
    | password_enc        | varchar(255) | NO   |     |         |                |
    | flag_email_verified | int(1)       | NO   |     | 0       |                |
    | flag_banned         | int(1)       | NO   |     | 0       |                |
    | flag_deleted        | int(1)       | NO   |     | 0       |                |
    | flag_two_factor     | int(1)       | NO   |     | 0       |                |
    +---------------------+--------------+------+-----+---------+----------------+
    """

    __tablename__ = 'login_popup_users'

    user_id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password_enc = Column(String(255), nullable=False,
                          server_default=text("''"))
    flag_email_verified = Column(Integer, nullable=False,
                                 server_default=text("'0'"))
    flag_banned = Column(Integer, nullable=False, server_default=text("'0'"))
    flag_deleted = Column(Integer, nullable=False, server_default=text("'0'"))
    flag_two_factor = Column(Integer, nullable=False,
                             server_default=text("'0'"))
