import argparse

import boto3


def provision(pool_name: str = "DreamSquareUsers", region: str | None = None, client=None) -> dict:
    """Create a Cognito user pool keyed by email and an app client with no secret.

    Returns the environment settings the API needs to verify tokens.
    """
    cognito = client or boto3.client('cognito-idp', region_name=region)
    pool = cognito.create_user_pool(
        PoolName=pool_name,
        UsernameAttributes=['email'],
        AutoVerifiedAttributes=['email'],
    )
    pool_id = pool['UserPool']['Id']
    app_client = cognito.create_user_pool_client(
        UserPoolId=pool_id,
        ClientName='dreamsquare-web',
        GenerateSecret=False,
        ExplicitAuthFlows=['ALLOW_USER_SRP_AUTH', 'ALLOW_REFRESH_TOKEN_AUTH'],
    )
    return {
        'COGNITO_REGION': region or cognito.meta.region_name,
        'COGNITO_USER_POOL_ID': pool_id,
        'COGNITO_APP_CLIENT_ID': app_client['UserPoolClient']['ClientId'],
    }


def main():
    parser = argparse.ArgumentParser(description=provision.__doc__.splitlines()[0])
    parser.add_argument('--name', default='DreamSquareUsers')
    parser.add_argument('--region')
    args = parser.parse_args()
    for key, value in provision(args.name, args.region).items():
        print(f'{key}={value}')


if __name__ == '__main__':
    main()
