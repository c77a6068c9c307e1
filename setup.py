import codecs
import os
import re

from setuptools import find_packages, setup


def get_version(filename):
    with codecs.open(filename, "r", "utf-8") as fp:
        contents = fp.read()
    return re.search(r"__version__ = ['\"]([^'\"]+)['\"]", contents).group(1)


version = get_version(os.path.join("src", "django_shed", "__init__.py"))


with codecs.open("README.rst", "r", "utf-8") as readme_file:
    readme = readme_file.read()

with codecs.open("HISTORY.rst", "r", "utf-8") as history_file:
    history = history_file.read().replace(".. :changelog:", "")

setup(
    name="django-shed",
    version=version,
    description=(
        "Deadline propagation and load-shedding for Django, PostgreSQL and "
        "httpx"
    ),
    long_description=readme + "\n\n" + history,
    long_description_content_type="text/x-rst",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    include_package_data=True,
    install_requires=[
        "Django>=3.2",
        "httpx>=0.23",
    ],
    extras_require={
        "postgresql": ["psycopg[binary]>=3.1"],
        "tests": [
            "psycopg[binary]>=3.1",
            "pytest>=7.0",
            "pytest-django>=4.5",
        ],
    },
    python_requires=">=3.8",
    license="BSD",
    zip_safe=False,
    keywords=[
        "Django",
        "PostgreSQL",
        "MySQL",
        "deadline",
        "timeout",
        "load shedding",
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Framework :: Django",
        "Framework :: Django :: 3.2",
        "Framework :: Django :: 4.2",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Natural Language :: English",
        "Operating System :: OS Independent",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Topic :: Database",
        "Topic :: Internet :: WWW/HTTP",
    ],
)
