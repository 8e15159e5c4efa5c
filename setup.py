"""Install the login popup service."""

from setuptools import setup, find_packages

setup(
    name='login-popup',
    version='1.0.0',
    packages=find_packages(exclude=['*tests*']),
    py_modules=['wsgi'],
    package_data={'login_popup': ['templates/login_popup/*.html']},
    include_package_data=True,
    python_requires='>=3.8',
    install_requires=[
        "flask",
        "werkzeug",
        "wtforms",
        "markupsafe",
        "sqlalchemy",
        "flask-sqlalchemy",
        "python-dateutil",
        "pytz",
        "pyjwt",
        "redis",
        "fakeredis",
        "retry",
        "requests",
        "python-json-logger",
    ],
    extras_require={
        'test': [
            "pytest",
            "hypothesis",
        ]
    },
    zip_safe=False
)
