# TaskDAV
# Copyright (C) 2016-2017 Jelmer Vernooĳ <jelmer@jelmer.uk>, et al.
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

"""TaskDAV command-line handling."""

import argparse
import asyncio
import sys

from . import __version__


# If no subparser is given, default to 'serve'
def set_default_subparser(self, argv, name):
    subparser_found = False
    for arg in argv:
        if arg in ["-h", "--help", "--version"]:
            break
    else:
        for x in self._subparsers._actions:
            if not isinstance(x, argparse._SubParsersAction):
                continue
            for sp_name in x._name_parser_map.keys():
                if sp_name in argv:
                    subparser_found = True
        if not subparser_found:
            print('No subcommand given, defaulting to "%s"' % name)
            argv.insert(0, name)


def _lookup_user(store, username):
    user = store.get_user(username)
    if user is None:
        sys.stderr.write(f"No such user: {username}\n")
    return user


def create_user(args):
    from .store import AlreadyExists
    from .web import open_store

    store = open_store(args)
    try:
        user = store.create_user(args.username, args.display_name)
    except AlreadyExists:
        sys.stderr.write(f"User {args.username} already exists.\n")
        return 1
    print(f"Created user {user.username} ({user.id})")
    return 0


def create_token(args):
    from .auth import generate_token, hash_token
    from .web import open_store

    store = open_store(args)
    user = _lookup_user(store, args.username)
    if user is None:
        return 1
    token = generate_token()
    store.add_credential(user.id, hash_token(token))
    # The token itself is not stored; this is the only time it is shown.
    print(token)
    return 0


def revoke_tokens(args):
    from .web import open_store

    store = open_store(args)
    user = _lookup_user(store, args.username)
    if user is None:
        return 1
    count = store.revoke_credentials(user.id)
    print(f"Revoked {count} token(s) for {user.username}")
    return 0


def create_project(args):
    from .web import open_store

    store = open_store(args)
    user = _lookup_user(store, args.username)
    if user is None:
        return 1
    project = store.create_project(user.id, args.name)
    print(f"Created project {project.name!r} with id {project.id}")
    return 0


async def main(argv):
    from . import web

    parser = argparse.ArgumentParser()

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + ".".join(map(str, __version__)),
    )

    subparsers = parser.add_subparsers(help="Subcommands", dest="subcommand")
    web_parser = subparsers.add_parser(
        "serve", usage="%(prog)s [OPTIONS]", help="Run a TaskDAV server"
    )
    web.add_parser(web_parser)

    user_parser = subparsers.add_parser("create-user", help="Add a user")
    user_parser.add_argument("username")
    user_parser.add_argument(
        "--display-name", dest="display_name", default=None,
        help="Human readable name of the user.")
    web.add_store_argument(user_parser)

    token_parser = subparsers.add_parser(
        "create-token", help="Generate an API token for a user")
    token_parser.add_argument("username")
    web.add_store_argument(token_parser)

    revoke_parser = subparsers.add_parser(
        "revoke-tokens", help="Revoke all API tokens of a user")
    revoke_parser.add_argument("username")
    web.add_store_argument(revoke_parser)

    project_parser = subparsers.add_parser(
        "create-project", help="Create a project for a user")
    project_parser.add_argument("username")
    project_parser.add_argument("name")
    web.add_store_argument(project_parser)

    set_default_subparser(parser, argv, "serve")
    args = parser.parse_args(argv)

    if args.subcommand == "serve":
        return await web.main(args, parser)
    elif args.subcommand == "create-user":
        return create_user(args)
    elif args.subcommand == "create-token":
        return create_token(args)
    elif args.subcommand == "revoke-tokens":
        return revoke_tokens(args)
    elif args.subcommand == "create-project":
        return create_project(args)
    else:
        parser.print_help()
        return 1


def cli():
    sys.exit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    cli()
